"""relchain - release orchestration for multi-repository Rust component chains."""

__version__ = "0.1.0"
