"""appship run monitor — terminal rendering of finished pipeline runs.

Modules
-------
renderer
    ``MonitorRenderer`` turns a ``PipelineResult`` and ``ConfigSnapshot``
    into Rich renderables for terminal display.
"""
