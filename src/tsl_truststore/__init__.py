"""
tsl_truststore — ETSI Trust Service Status List synchronizer.

Downloads a national trust list (ETSI TS 119 612 XML), extracts the X.509
certificates of its trust service providers, and publishes them atomically
as individual PEM files plus one PEM bundle for client-certificate
validation. Also describes live TLS sessions for diagnostics.

Built on the Railway-Oriented Programming (ROP) framework for
explicit, composable, functional error handling.
"""

__version__ = "0.1.0"
