from parcelops.utils.fsm import TransitionValidator
from parcelops.routes.orders import ORDER_FSM
from werkzeug.exceptions import BadRequest
import pytest


def test_transition_validator_allows_valid():
    fsm = TransitionValidator({'A': {'B'}, 'B': set()})
    assert fsm.assert_can_transition('A', 'B') is True


def test_transition_validator_blocks_invalid():
    fsm = TransitionValidator({'A': {'B'}, 'B': set()})
    with pytest.raises(BadRequest) as exc:
        fsm.assert_can_transition('A', 'C')
    assert exc.value.description == 'Invalid status transition A -> C'


def test_unknown_states_are_terminal():
    fsm = TransitionValidator({'A': {'B'}})
    assert fsm.allowed_targets('Z') == set()
    assert not fsm.can_transition('Z', 'A')


@pytest.mark.parametrize('current,target,ok', [
    ('pending', 'processing', True),
    ('pending', 'shipped', False),
    ('processing', 'cancelled', True),
    ('shipped', 'delivered', True),
    ('shipped', 'cancelled', True),
    ('delivered', 'cancelled', False),
    ('delivered', 'returned', True),
    ('cancelled', 'pending', False),
    ('returned', 'delivered', False),
])
def test_order_lifecycle_graph(current, target, ok):
    assert ORDER_FSM.can_transition(current, target) is ok
