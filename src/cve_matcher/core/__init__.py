"""Core layer: domain, ports, services, usecases."""

