"""
Random variate generation.

The uniform source keeps the C++SIM dual-generator design (Random.n):
a multiplicative generator feeds a 128-slot shuffle table that is indexed
by a linear congruential generator (Maclaren-Marsaglia shuffle). Every
generator owns its complete state, so replications running side by side
never share a stream.

Distributions form a closed set of frozen dataclasses. Each one validates
its parameters on construction and draws through the generator that is
passed in explicitly.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from numbers import Real
from typing import Any, ClassVar, Mapping

from flowsim.errors import ConfigurationError

# Constants from C++SIM Random.n
TWO_26 = 67108864  # 2**26
M = 100000000
B = 31415821
M1 = 10000
SERIES_SIZE = 128

_MASK64 = (1 << 64) - 1


def _mix_seed(seed: int) -> tuple[int, int]:
    """
    Spread one integer seed over the (MGen, LCG) seed pair.

    Uses the SplitMix64 finaliser so that seeds differing by one (as
    replication seeds do) start from unrelated shuffle tables.
    """
    z = (seed + 0x9E3779B97F4A7C15) & _MASK64
    z = ((z ^ (z >> 30)) * 0xBF58476D1CE4E5B9) & _MASK64
    z = ((z ^ (z >> 27)) * 0x94D049BB133111EB) & _MASK64
    z ^= z >> 31
    mg_seed = (z % TWO_26) | 1  # MGen seed must be odd
    lcg_seed = (z >> 32) % M
    return mg_seed, lcg_seed


class RandomVariateGenerator:
    """
    Seeded pseudo-random source plus parametric sampling.

    Given the same seed and the same sequence of calls, the generator
    returns bit-identical values.
    """

    def __init__(self, seed: int = 0) -> None:
        if isinstance(seed, bool) or not isinstance(seed, int):
            raise ConfigurationError(f"seed must be an integer, got {seed!r}")
        self._seed = seed
        self._mseed, self._lseed = _mix_seed(seed)
        self._series = [self._mgen() for _ in range(SERIES_SIZE)]

    @property
    def seed(self) -> int:
        """Seed this generator was created with."""
        return self._seed

    def _mgen(self) -> float:
        """
        Multiplicative generator (Mitrani 1992).

        Y[i+1] = Y[i] * 5^5 mod 2^26, period 2^24 for odd seeds.
        """
        self._mseed = (self._mseed * 25) % TWO_26
        self._mseed = (self._mseed * 25) % TWO_26
        self._mseed = (self._mseed * 5) % TWO_26
        return self._mseed / TWO_26

    def uniform01(self) -> float:
        """
        Next uniform value in the open interval (0, 1).

        LCG step (Sedgewick 1983) picks a slot in the shuffle table; the
        slot is refilled from the multiplicative generator. Table entries
        are odd multiples of 2^-26, so 0.0 and 1.0 never occur.
        """
        p0 = self._lseed % M1
        p1 = self._lseed // M1
        q0 = B % M1
        q1 = B // M1

        self._lseed = (((((p0 * q1 + p1 * q0) % M1) * M1 + p0 * q0) % M) + 1) % M

        choose = self._lseed % SERIES_SIZE
        result = self._series[choose]
        self._series[choose] = self._mgen()
        return result

    def standard_normal(self) -> float:
        """Standard normal variate by the Box-Muller transform."""
        u1 = self.uniform01()
        u2 = self.uniform01()
        return math.sqrt(-2.0 * math.log(u1)) * math.cos(2.0 * math.pi * u2)

    def chance(self, p: float) -> bool:
        """True with probability p."""
        return self.uniform01() < p

    def sample(self, distribution: Distribution) -> float:
        """Draw one value from the given distribution."""
        return distribution.draw(self)

    def uniformity_error(self, draws: int = 10000, bins: int = 100) -> float:
        """
        Chi-square uniformity measure; near 0.0 for a good stream.

        Consumes ``draws`` values. From Random.n:92-104.
        """
        counts = [0] * bins
        for _ in range(draws):
            counts[int(self.uniform01() * bins)] += 1
        t = sum(c * c for c in counts)
        return 1.0 - ((bins * t / draws - draws) / bins)


def _check_real(kind: str, name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, Real) or not math.isfinite(value):
        raise ConfigurationError(f"{kind}: parameter {name!r} must be a finite number, got {value!r}")


class Distribution(ABC):
    """A parametric distribution that can be sampled by a generator."""

    kind: ClassVar[str]
    aliases: ClassVar[dict[str, str]] = {}

    def __post_init__(self) -> None:
        for name, value in asdict(self).items():
            _check_real(self.kind, name, value)
        self.validate()

    def validate(self) -> None:
        """Check relations between parameters. Raise ConfigurationError."""

    def _fail(self, message: str) -> None:
        raise ConfigurationError(f"{self.kind}: {message}")

    @abstractmethod
    def draw(self, rng: RandomVariateGenerator) -> float:
        """Draw one value using rng."""
        ...

    @abstractmethod
    def expected_value(self) -> float:
        """Theoretical mean."""
        ...

    def to_dict(self) -> dict[str, Any]:
        """Mapping form accepted by distribution_from_dict()."""
        return {"kind": self.kind, **asdict(self)}


@dataclass(frozen=True)
class Constant(Distribution):
    kind: ClassVar[str] = "constant"

    value: float

    def draw(self, rng: RandomVariateGenerator) -> float:
        return self.value

    def expected_value(self) -> float:
        return self.value


@dataclass(frozen=True)
class Uniform(Distribution):
    kind: ClassVar[str] = "uniform"

    min: float
    max: float

    def validate(self) -> None:
        if self.min > self.max:
            self._fail(f"min {self.min} exceeds max {self.max}")

    def draw(self, rng: RandomVariateGenerator) -> float:
        return self.min + (self.max - self.min) * rng.uniform01()

    def expected_value(self) -> float:
        return 0.5 * (self.min + self.max)


@dataclass(frozen=True)
class Exponential(Distribution):
    kind: ClassVar[str] = "exponential"

    mean: float

    def validate(self) -> None:
        if self.mean <= 0:
            self._fail(f"mean must be positive, got {self.mean}")

    def draw(self, rng: RandomVariateGenerator) -> float:
        # Inverse CDF
        return -math.log(1.0 - rng.uniform01()) * self.mean

    def expected_value(self) -> float:
        return self.mean


@dataclass(frozen=True)
class Normal(Distribution):
    kind: ClassVar[str] = "normal"
    aliases: ClassVar[dict[str, str]] = {"std_dev": "stddev", "stdDev": "stddev", "sd": "stddev"}

    mean: float
    stddev: float

    def validate(self) -> None:
        if self.stddev < 0:
            self._fail(f"stddev must not be negative, got {self.stddev}")

    def draw(self, rng: RandomVariateGenerator) -> float:
        if self.stddev == 0:
            return self.mean
        return self.mean + self.stddev * rng.standard_normal()

    def expected_value(self) -> float:
        return self.mean


@dataclass(frozen=True)
class Triangular(Distribution):
    kind: ClassVar[str] = "triangular"

    min: float
    mode: float
    max: float

    def validate(self) -> None:
        if not self.min <= self.mode <= self.max:
            self._fail(f"need min <= mode <= max, got ({self.min}, {self.mode}, {self.max})")

    def draw(self, rng: RandomVariateGenerator) -> float:
        span = self.max - self.min
        if span == 0:
            return self.min
        u = rng.uniform01()
        if u < (self.mode - self.min) / span:
            return self.min + math.sqrt(u * span * (self.mode - self.min))
        return self.max - math.sqrt((1.0 - u) * span * (self.max - self.mode))

    def expected_value(self) -> float:
        return (self.min + self.mode + self.max) / 3.0


@dataclass(frozen=True)
class Lognormal(Distribution):
    """Exponential of Normal(mu, sigma)."""

    kind: ClassVar[str] = "lognormal"

    mu: float
    sigma: float

    def validate(self) -> None:
        if self.sigma < 0:
            self._fail(f"sigma must not be negative, got {self.sigma}")

    def draw(self, rng: RandomVariateGenerator) -> float:
        if self.sigma == 0:
            return math.exp(self.mu)
        return math.exp(self.mu + self.sigma * rng.standard_normal())

    def expected_value(self) -> float:
        return math.exp(self.mu + 0.5 * self.sigma * self.sigma)


@dataclass(frozen=True)
class Gamma(Distribution):
    """
    Gamma(shape, scale) by Marsaglia and Tsang.

    Shapes below one are boosted: Gamma(a) = Gamma(1 + a) * U^(1/a).
    """

    kind: ClassVar[str] = "gamma"

    shape: float
    scale: float

    def validate(self) -> None:
        if self.shape <= 0 or self.scale <= 0:
            self._fail(f"shape and scale must be positive, got ({self.shape}, {self.scale})")

    def draw(self, rng: RandomVariateGenerator) -> float:
        if self.shape < 1.0:
            boost = rng.uniform01() ** (1.0 / self.shape)
            return _marsaglia_tsang(rng, self.shape + 1.0) * self.scale * boost
        return _marsaglia_tsang(rng, self.shape) * self.scale

    def expected_value(self) -> float:
        return self.shape * self.scale


def _marsaglia_tsang(rng: RandomVariateGenerator, shape: float) -> float:
    d = shape - 1.0 / 3.0
    c = 1.0 / math.sqrt(9.0 * d)
    while True:
        x = rng.standard_normal()
        v = 1.0 + c * x
        if v <= 0:
            continue
        v = v * v * v
        u = rng.uniform01()
        if u < 1.0 - 0.0331 * x ** 4:
            return d * v
        if math.log(u) < 0.5 * x * x + d * (1.0 - v + math.log(v)):
            return d * v


@dataclass(frozen=True)
class Weibull(Distribution):
    kind: ClassVar[str] = "weibull"

    scale: float
    shape: float

    def validate(self) -> None:
        if self.shape <= 0 or self.scale <= 0:
            self._fail(f"shape and scale must be positive, got ({self.shape}, {self.scale})")

    def draw(self, rng: RandomVariateGenerator) -> float:
        return self.scale * (-math.log(1.0 - rng.uniform01())) ** (1.0 / self.shape)

    def expected_value(self) -> float:
        return self.scale * math.gamma(1.0 + 1.0 / self.shape)


@dataclass(frozen=True)
class Erlang(Distribution):
    """
    Sum of k exponential phases with the given overall mean.

    Same product-of-uniforms form as C++SIM ErlangStream.
    """

    kind: ClassVar[str] = "erlang"

    k: int
    mean: float

    def validate(self) -> None:
        if not isinstance(self.k, int) or self.k < 1:
            self._fail(f"k must be a positive integer, got {self.k}")
        if self.mean <= 0:
            self._fail(f"mean must be positive, got {self.mean}")

    def draw(self, rng: RandomVariateGenerator) -> float:
        z = 1.0
        for _ in range(self.k):
            z *= rng.uniform01()
        return -(self.mean / self.k) * math.log(z)

    def expected_value(self) -> float:
        return self.mean


DISTRIBUTIONS: dict[str, type[Distribution]] = {
    cls.kind: cls
    for cls in (Constant, Uniform, Exponential, Normal, Triangular, Lognormal, Gamma, Weibull, Erlang)
}


def distribution_from_dict(spec: Mapping[str, Any] | Distribution) -> Distribution:
    """
    Build a distribution from ``{"kind": ..., <params>}``.

    ``exponential`` also accepts ``rate`` in place of ``mean``. Unknown
    kinds and missing or unexpected parameters raise ConfigurationError.
    """
    if isinstance(spec, Distribution):
        return spec
    if not isinstance(spec, Mapping):
        raise ConfigurationError(f"distribution must be a mapping, got {spec!r}")

    params = dict(spec)
    kind = params.pop("kind", None)
    if kind is None:
        kind = params.pop("distribution", None)
    cls = DISTRIBUTIONS.get(str(kind).lower()) if kind is not None else None
    if cls is None:
        raise ConfigurationError(f"unknown distribution kind {kind!r}")

    if cls is Exponential and "rate" in params and "mean" not in params:
        rate = params.pop("rate")
        _check_real(cls.kind, "rate", rate)
        if rate <= 0:
            raise ConfigurationError(f"exponential: rate must be positive, got {rate}")
        params["mean"] = 1.0 / rate

    for alias, name in cls.aliases.items():
        if alias in params and name not in params:
            params[name] = params.pop(alias)

    try:
        return cls(**params)
    except TypeError as exc:
        raise ConfigurationError(f"{cls.kind}: {exc}") from exc
