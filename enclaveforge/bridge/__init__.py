"""Bridges to services outside the process boundary.

Modules
-------
crypto_bridge
    Ed25519 signing and verification (PyNaCl): request authentication
    headers for the build service and DSSE provenance signature checks.
build_api
    ``BuildApiClient``, a thin httpx client for the verifiable build
    service that maps HTTP failures onto typed exceptions.
registry
    ``RegistryDigestLookup`` resolves a Docker Hub tag to its manifest
    digest through the registry's bearer-token flow.
"""
