from typing import Callable, Dict, List, Optional

from models.schemas import CanonicalState, VMDescriptor


# VM states reported by the platform, resolved before the LCM sub-state
STATES_REF: Dict[int, CanonicalState] = {
    0: CanonicalState.INIT,        # INIT
    1: CanonicalState.INIT,        # PENDING
    2: CanonicalState.INIT,        # HOLD
    4: CanonicalState.STOPPED,     # STOPPED
    5: CanonicalState.SUSPENDED,   # SUSPENDED
    6: CanonicalState.DELETED,     # DONE
    8: CanonicalState.STOPPED,     # POWEROFF
    9: CanonicalState.INIT,        # UNDEPLOYED
    10: CanonicalState.OPERATION,  # CLONING
    11: CanonicalState.FAILURE,    # CLONING_FAILURE
}

LCM_STATE_REF: Dict[int, CanonicalState] = {
    0: CanonicalState.INIT,     # LCM_INIT
    1: CanonicalState.INIT,     # PROLOG
    2: CanonicalState.INIT,     # BOOT
    3: CanonicalState.RUNNING,  # RUNNING
}

# History actions closing a hosting segment
ACTION_STATES: Dict[int, CanonicalState] = {
    9: CanonicalState.SUSPENDED,
    10: CanonicalState.SUSPENDED,
    20: CanonicalState.STOPPED,
    27: CanonicalState.DELETED,
    28: CanonicalState.DELETED,
}

Resolver = Callable[[Optional[int], Optional[int], Optional[str]], Optional[CanonicalState]]


def from_state(state: Optional[int], lcm_state: Optional[int], lcm_state_str: Optional[str]) -> Optional[CanonicalState]:
    if state is None:
        return None
    return STATES_REF.get(state)


def from_lcm_state(state: Optional[int], lcm_state: Optional[int], lcm_state_str: Optional[str]) -> Optional[CanonicalState]:
    if lcm_state is None:
        return None
    return LCM_STATE_REF.get(lcm_state)


def from_lcm_state_str(state: Optional[int], lcm_state: Optional[int], lcm_state_str: Optional[str]) -> Optional[CanonicalState]:
    text = lcm_state_str or ""
    if text.endswith("FAILURE"):
        return CanonicalState.FAILURE
    if text.endswith("UNKNOWN"):
        return CanonicalState.UNKNOWN
    return None


def mid_transition(state: Optional[int], lcm_state: Optional[int], lcm_state_str: Optional[str]) -> Optional[CanonicalState]:
    return CanonicalState.OPERATION


RESOLVERS: List[Resolver] = [
    from_state,
    from_lcm_state,
    from_lcm_state_str,
    mid_transition,
]


def map_state(
    state: Optional[int],
    lcm_state: Optional[int] = None,
    lcm_state_str: Optional[str] = None,
    resolvers: List[Resolver] = RESOLVERS
) -> CanonicalState:
    for resolve in resolvers:
        result = resolve(state, lcm_state, lcm_state_str)
        if result is not None:
            return result
    return CanonicalState.OPERATION


def state_from_action(action: Optional[int]) -> CanonicalState:
    if action is None:
        return CanonicalState.RUNNING
    return ACTION_STATES.get(action, CanonicalState.RUNNING)


def vm_state(vm: VMDescriptor) -> CanonicalState:
    """Current state of a VM; UNKNOWN when the platform did not report one."""
    if vm.state is None:
        return CanonicalState.UNKNOWN
    return map_state(vm.state, vm.lcm_state, vm.lcm_state_str)
