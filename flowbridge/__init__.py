"""FlowBridge: validate workflow graphs and serve them as Model Context Protocol tools."""

__version__ = "1.0.0"
