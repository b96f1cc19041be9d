"""
Register map client tests.
"""
from unittest.mock import MagicMock

from bms_sim.client import format_register_map, read_register_map
from bms_sim.device import DeviceModel


class TestClient:
    """Decoding and display of a read."""

    def test_read_register_map(self):
        words = DeviceModel.encode_registers(52.5, 25.0, 15.0, 85.0)
        client = MagicMock()
        client.read_holding_registers.return_value = MagicMock(
            registers=words, **{"isError.return_value": False},
        )

        assert read_register_map(client, slave_id=3) == words
        client.read_holding_registers.assert_called_once_with(0, count=31, device_id=3)

    def test_read_error(self, capsys):
        client = MagicMock()
        client.read_holding_registers.return_value = MagicMock(
            **{"isError.return_value": True},
        )

        assert read_register_map(client) is None
        assert "ERROR" in capsys.readouterr().out

    def test_format(self):
        words = DeviceModel.encode_registers(52.5, 25.0, -5.0, 20.0)
        text = format_register_map(words)

        assert "voltage" in text and "52.500" in text
        assert "temperature" in text and "25.000" in text
        assert "-5.000" in text
        assert "0x1482" in text  # 5250
        assert "20.000" in text
