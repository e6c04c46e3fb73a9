from __future__ import annotations

from threading import Lock
from typing import Tuple


_lock = Lock()
_counters: dict[str, dict[Tuple[Tuple[str, str], ...], int]] = {}


def _inc(name: str, labels: dict[str, str] | None = None, value: int = 1) -> None:
    key = tuple(sorted((labels or {}).items()))
    with _lock:
        series = _counters.setdefault(name, {})
        series[key] = int(series.get(key, 0)) + int(value)


def increment_http_requests(route: str, status: int) -> None:
    _inc("http_requests_total", {"route": route, "status": str(status)})


def increment_transition(event: str, source: str, result: str) -> None:
    _inc("purchase_transitions_total", {"event": event, "source": source, "result": result})


def increment_side_effect(effect: str, result: str) -> None:
    _inc("purchase_side_effects_total", {"effect": effect, "result": result})


def record_reconcile_cycle(summary: dict[str, int]) -> None:
    _inc("reconcile_cycles_total")
    for key in ("auto_confirmed", "escalated", "skipped", "conflicts", "errors", "side_effect_failures"):
        value = int(summary.get(key) or 0)
        if value:
            _inc("reconcile_candidates_total", {"outcome": key}, value)


def get_counter(name: str, labels: dict[str, str] | None = None) -> int:
    key = tuple(sorted((labels or {}).items()))
    with _lock:
        return int(_counters.get(name, {}).get(key, 0))


def render_prometheus() -> str:
    lines: list[str] = []
    with _lock:
        for name, series in sorted(_counters.items()):
            lines.append(f"# TYPE {name} counter")
            for labels, value in sorted(series.items()):
                if labels:
                    label_str = ",".join(f'{k}="{v}"' for k, v in labels)
                    lines.append(f"{name}{{{label_str}}} {value}")
                else:
                    lines.append(f"{name} {value}")
    return "\n".join(lines) + ("\n" if lines else "")
