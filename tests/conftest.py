"""
Pytest configuration and fixtures for flowsim.
"""

from typing import Callable

import pytest

from flowsim import Constant, Exponential, ModelConfig, ResourceSpec, StepSpec
from flowsim.kernel import SimulationKernel


def series_line(
    arrival=None,
    first=None,
    second=None,
    capacities: tuple[int, int] = (1, 1),
    horizon: float = 60.0,
) -> ModelConfig:
    """Two single-step stations in series: cut -> pack -> exit."""
    return ModelConfig(
        resources=(
            ResourceSpec("r1", "Cutter", capacities[0]),
            ResourceSpec("r2", "Packer", capacities[1]),
        ),
        steps=(
            StepSpec("cut", "r1", first or Constant(5.0), successor="pack"),
            StepSpec("pack", "r2", second or Constant(3.0)),
        ),
        entry_step="cut",
        arrival=arrival or Exponential(8.0),
        horizon=horizon,
    )


def single_server(arrival, service, capacity: int = 1, horizon: float = 10.0, discipline: str = "fifo") -> ModelConfig:
    return ModelConfig(
        resources=(ResourceSpec("m", "Machine", capacity, discipline),),
        steps=(StepSpec("work", "m", service),),
        entry_step="work",
        arrival=arrival,
        horizon=horizon,
    )


@pytest.fixture
def line_config() -> ModelConfig:
    """The two-station line with Poisson arrivals (mean gap 8, horizon 60)."""
    return series_line()


@pytest.fixture
def deterministic_line() -> ModelConfig:
    """Two-station line with constant arrivals every 8 minutes."""
    return series_line(arrival=Constant(8.0))


@pytest.fixture
def congested_server() -> ModelConfig:
    """Arrivals every 2, service 5, one server, arrivals stop at t=10."""
    return single_server(Constant(2.0), Constant(5.0))


@pytest.fixture
def run_kernel() -> Callable[[ModelConfig, int], SimulationKernel]:
    """Initialize and run a kernel, returning it drained."""

    def _run(config: ModelConfig, seed: int = 0) -> SimulationKernel:
        kernel = SimulationKernel(config, seed)
        kernel.initialize()
        kernel.run()
        return kernel

    return _run


@pytest.fixture
def make_line() -> Callable[..., ModelConfig]:
    """Builder for variants of the two-station line."""
    return series_line


@pytest.fixture
def make_server() -> Callable[..., ModelConfig]:
    """Builder for single-station models."""
    return single_server
