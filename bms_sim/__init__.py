"""Battery management unit simulator (Modbus TCP + MQTT)."""

__version__ = "0.1.0"
