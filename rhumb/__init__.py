"""Value model and stack-based bytecode virtual machine for the Rhumb language."""

__version__ = "0.1.0"
__all__ = ["values", "opcodes", "frames", "arithmetic", "space", "machine"]