"""enclaveforge: layered, attested releases for confidential-compute enclaves.

Turns a Dockerfile or registry image into a secret-bearing Release, and
drives verifiable builds through provenance verification.
"""

__version__ = "0.4.0"
__all__ = ["__version__"]
