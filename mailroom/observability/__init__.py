"""Observability - logging and telemetry helpers"""
