"""SuperConductor Bridge — mirrors SuperConductor rundowns onto a control panel."""

__version__ = "0.3.0"
