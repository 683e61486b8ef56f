from __future__ import annotations
"""Finite state machine helper for enforcing allowed status transitions.

Usage:
    from parcelops.utils.fsm import TransitionValidator
    ORDER_FSM = TransitionValidator({
        'pending': {'processing', 'cancelled'},
        'processing': {'shipped', 'cancelled'},
        'delivered': {'returned'},
    })
    ORDER_FSM.assert_can_transition(order.status, 'shipped')

States missing from the graph are terminal. Invalid moves abort with 400.
"""
from typing import Dict, Iterable, Set
from flask import abort


class TransitionValidator:
    def __init__(self, graph: Dict[str, Iterable[str]], field_name: str = 'status'):
        self.graph: Dict[str, Set[str]] = {k: set(v) for k, v in graph.items()}
        self.field_name = field_name

    def allowed_targets(self, current: str) -> Set[str]:
        return set(self.graph.get(current, ()))

    def can_transition(self, current: str, target: str) -> bool:
        return target in self.graph.get(current, ())

    def assert_can_transition(self, current: str, target: str):
        if not self.can_transition(current, target):
            abort(400, description=f"Invalid {self.field_name} transition {current} -> {target}")
        return True

__all__ = ['TransitionValidator']
