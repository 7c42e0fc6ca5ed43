"""Mirror the Rust toolchain distribution server for static hosting."""

__version__ = "0.1.0"
