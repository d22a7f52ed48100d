"""Detection of CPU vendor, features, caches and topology from CPUID data and OS information."""

__version__ = "0.1.0"
__all__ = [
    "features",
    "model",
    "registers",
    "x86",
    "x86_features",
    "arm64",
    "arm_os",
    "detect",
    "cli",
]