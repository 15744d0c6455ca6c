"""
push — Deferred, replace-on-reschedule Web Push delivery.

Sub-modules:
    identity    — endpoint → stable job id
    models      — Subscription, Job, payload and outcome types
    capability  — what this deployment can do (queue / VAPID configured)
    queue       — delayed queue contract, Redis and in-memory backends
    scheduler   — schedule / cancel entry points
    delivery    — pywebpush client + outcome classification
    retry       — re-enqueue policy for transient failures
    worker      — claim-and-dispatch loop
    runtime     — wiring used by the API process and the worker process
"""
