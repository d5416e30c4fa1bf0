"""tvremote — remote control and screen mirroring for Samsung Tizen TVs.

Three independent pieces make up the engine:

  - :mod:`tvremote.control`    persistent WebSocket control channel
  - :mod:`tvremote.discovery`  SSDP scanner for TVs on the local network
  - :mod:`tvremote.mirror`     latest-frame hub served as an MJPEG stream

Quickstart::

    from tvremote.control import ControlChannel, KeyMode

    channel = ControlChannel()
    await channel.connect("192.168.1.20", 8002, "Living room remote")
    await channel.wait_for_state(lambda s: s.is_connected, timeout=60)
    await channel.send_key("KEY_VOLUP", KeyMode.CLICK, times=3)
"""

__version__ = "0.3.0"
