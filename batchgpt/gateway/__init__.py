"""Request orchestration engine.

Turns an unreliable, latency-variable remote LLM call into a predictable unit
of work:
  - Response Validator (JSON, latency floor, token floor)
  - Moderation Gate (optional pre-flight veto)
  - Retry Policy (attempt budget, fixed or computed delay)
  - Request Orchestrator (per-request retry state machine)
  - Concurrency Dispatcher (bounded, priority-ordered fan-out)
"""
