"""Operations agent: routed command generation, risk gating and self-healing execution."""

__version__ = "0.1.0"
