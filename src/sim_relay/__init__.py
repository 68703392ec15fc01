"""sim-relay: stream a simulation kernel's output to remote viewers.

The server side (sim_relay.bridge) supervises one kernel process per
WebSocket session and turns its output into typed events. The client side
(sim_relay.client) buffers those events under pause control and renders a
rolling chart window and a classified log view.
"""

__version__ = "0.1.0"
