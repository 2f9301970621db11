"""Shipyard triggers — revision sources and the listener that watches them.

``sources`` holds the repository collaborators (git, plain directory,
in-memory).  ``listener`` turns their branch heads and inbound webhooks
into ``(environment, revision)`` triggers for the Rollout Controller.
"""
