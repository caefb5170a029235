"""appship notification routing — dispatches run notifications to every configured sink.

Sinks are pluggable targets: local JSON files, email payloads (optionally
delivered over SMTP), or any custom sink implementing the BaseSink protocol.

The SinkDispatcher fans out each notification to every registered sink.
A failing sink never blocks the others, and delivery failure never changes
the outcome of a build.
"""
