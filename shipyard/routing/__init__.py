"""Shipyard notification routing — fans pipeline events out to every sink.

The ``Notifier`` accepts events from the Rollout Controller without ever
blocking it; a background thread hands each event to the
``SinkDispatcher``, which delivers it to all registered sinks.  Sinks are
pluggable targets: local JSON files, the log, or any custom object
implementing the ``BaseSink`` protocol.
"""
