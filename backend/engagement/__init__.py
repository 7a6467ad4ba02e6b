"""Engagement metrics engine: canonical identities, windowed activity, retention and audit."""
