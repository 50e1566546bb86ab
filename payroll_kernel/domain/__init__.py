"""Pure domain helpers for the payroll kernel."""

from payroll_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = ["Clock", "DeterministicClock", "SystemClock"]
