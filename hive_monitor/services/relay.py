"""
Relay Control Policy - reference LVD hysteresis state machine

Runs on the LVD board, not on the server. Kept here so the semantics of the
stored thresholds can be simulated and tested against real policies.
"""

from enum import Enum
from typing import Iterable

from hive_monitor.services.policy import PolicySnapshot


class RelayState(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class RelayController:
    """Two-state hysteresis relay driven by battery voltage samples."""

    def __init__(self, policy: PolicySnapshot):
        self.policy = policy
        self.state = RelayState.CONNECTED

    def apply_policy(self, policy: PolicySnapshot) -> RelayState:
        """Refresh the cached policy (the device does this on its own schedule)."""
        self.policy = policy
        if not policy.enabled and self.state is RelayState.DISCONNECTED:
            self.state = RelayState.CONNECTED
        return self.state

    def feed(self, voltage: float) -> RelayState:
        """Evaluate one voltage sample and return the resulting state."""
        policy = self.policy

        if self.state is RelayState.CONNECTED:
            if policy.enabled and voltage < policy.disconnect_voltage:
                self.state = RelayState.DISCONNECTED
        else:
            # Reconnect even when disabled: fail toward power availability
            if not policy.enabled or voltage > policy.reconnect_voltage:
                self.state = RelayState.CONNECTED

        return self.state


def simulate(policy: PolicySnapshot, voltages: Iterable[float]) -> list[RelayState]:
    """Run a fresh controller over a voltage trace, returning the state after each sample."""
    controller = RelayController(policy)
    return [controller.feed(v) for v in voltages]
