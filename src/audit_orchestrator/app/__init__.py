"""Orchestration components: adapters, pipeline stages and state stores."""
