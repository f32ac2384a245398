"""pycomrade: plan/act/observe tool orchestration for local coding agents."""

__version__ = "0.1.0"
