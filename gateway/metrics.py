"""
Thread-safe in-memory metrics for the gateway.

Tracks:
  - Submissions and outcomes per job kind (requests.*, jobs.done.*, jobs.failed.*)
  - Error counters per code plus the last failures, for root-cause analysis
  - Provider call durations, split by outcome
  - Gauges: active jobs, start time

All data is ephemeral (resets on restart).
"""

import time
import threading
from collections import defaultdict, deque
from typing import Deque, Dict, List

_lock = threading.Lock()

# ── Counters ──────────────────────────────────────────────────────────────────
_counters: Dict[str, int] = defaultdict(int)

# ── Provider durations (last 100 per provider and outcome) ───────────────────
MAX_SAMPLES = 100
_durations: Dict[str, Dict[str, Deque[float]]] = defaultdict(
    lambda: {"ok": deque(maxlen=MAX_SAMPLES), "failed": deque(maxlen=MAX_SAMPLES)}
)

# ── Gauges ────────────────────────────────────────────────────────────────────
_gauges: Dict[str, float] = defaultdict(float)

# ── Last failures (RCA) ───────────────────────────────────────────────────────
MAX_ERRORS = 50
_recent_errors: Deque[dict] = deque(maxlen=MAX_ERRORS)


# ── Recording ─────────────────────────────────────────────────────────────────

def inc_counter(name: str, amount: int = 1):
    """Increment a counter (e.g. 'requests.generate-image', 'errors.ProviderTimeout')."""
    with _lock:
        _counters[name] += amount


def record_latency(provider: str, duration_ms: float, ok: bool = True):
    with _lock:
        _durations[provider]["ok" if ok else "failed"].append(duration_ms)


def set_gauge(name: str, value: float):
    with _lock:
        _gauges[name] = value


def add_gauge(name: str, delta: float):
    with _lock:
        _gauges[name] += delta


def record_error(provider: str, code: str, message: str, job_id: str = ""):
    with _lock:
        _recent_errors.append({
            "timestamp": time.time(),
            "provider": provider,
            "code": code,
            "message": message[:300],
            "job_id": job_id,
        })


def reset():
    """Clear everything (tests)."""
    with _lock:
        _counters.clear()
        _durations.clear()
        _gauges.clear()
        _recent_errors.clear()


# ── Snapshot ──────────────────────────────────────────────────────────────────

def _percentile(sorted_samples: List[float], q: float) -> float:
    index = min(len(sorted_samples) - 1, int(len(sorted_samples) * q))
    return sorted_samples[index]


def _duration_stats(samples) -> dict:
    ordered = sorted(samples)
    if not ordered:
        return {"count": 0}
    return {
        "count": len(ordered),
        "p50": _percentile(ordered, 0.50),
        "p95": _percentile(ordered, 0.95),
        "avg": sum(ordered) / len(ordered),
    }


def _job_summary() -> dict:
    kinds = {name.split(".", 1)[1] for name in _counters if name.startswith("requests.")}
    summary = {}
    for kind in sorted(kinds):
        done = _counters.get(f"jobs.done.{kind}", 0)
        failed = _counters.get(f"jobs.failed.{kind}", 0)
        finished = done + failed
        summary[kind] = {
            "submitted": _counters.get(f"requests.{kind}", 0),
            "done": done,
            "failed": failed,
            "failure_rate": round(failed / finished, 3) if finished else 0.0,
        }
    return summary


def get_snapshot() -> dict:
    """Consistent read of everything above, for the /metrics endpoint."""
    now = time.time()

    with _lock:
        latency = {
            provider: {outcome: _duration_stats(samples) for outcome, samples in by_outcome.items()}
            for provider, by_outcome in _durations.items()
        }

        error_patterns: Dict[str, int] = defaultdict(int)
        for err in _recent_errors:
            error_patterns[f"{err['provider']}:{err['code']}"] += 1

        return {
            "timestamp": now,
            "uptime_seconds": now - _gauges.get("start_time", now),
            "counters": dict(_counters),
            "gauges": dict(_gauges),
            "jobs": _job_summary(),
            "latency": latency,
            "error_patterns": dict(error_patterns),
            "recent_errors": list(_recent_errors)[-10:],
        }
