"""Session descriptor (SDP) for the recorder process."""

import logging
from pathlib import Path

from streamvault.core.exceptions import DescriptorWriteError
from streamvault.services.recording.relay import RelayParameters

logger = logging.getLogger(__name__)

SESSION_NAME = "streamvault-audio"

# Stereo Opus with 10 ms minimum packet time and in-band FEC, as browsers send it
OPUS_FORMAT_PARAMETERS = "sprop-stereo=1;stereo=1;minptime=10;useinbandfec=1"


def _format_parameters(params: RelayParameters) -> str:
    if params.codec_name.lower() == "opus":
        return OPUS_FORMAT_PARAMETERS
    return ";".join(f"{key}={value}" for key, value in params.format_parameters.items())


def build_descriptor(params: RelayParameters) -> str:
    """Render a receive-only, rtcp-mux SDP describing the relayed stream."""
    pt = params.payload_type
    lines = [
        "v=0",
        "o=- 0 0 IN IP4 127.0.0.1",
        f"s={SESSION_NAME}",
        f"c=IN IP4 {params.ip}",
        "t=0 0",
        f"m=audio {params.port} RTP/AVP {pt}",
        f"a=rtpmap:{pt} {params.codec_name}/{params.clock_rate}/{params.channels}",
    ]
    fmtp = _format_parameters(params)
    if fmtp:
        lines.append(f"a=fmtp:{pt} {fmtp}")
    lines += [
        "a=rtcp-mux",
        "a=recvonly",
        f"a=ssrc:{params.ssrc} cname:{SESSION_NAME}",
        "",
    ]
    return "\n".join(lines)


def write_descriptor(path: Path, params: RelayParameters) -> Path:
    """Write the descriptor for ``params`` to ``path``.

    Raises:
        DescriptorWriteError: If the file cannot be written.
    """
    try:
        path.write_text(build_descriptor(params), encoding="utf-8")
    except OSError as exc:
        raise DescriptorWriteError(str(path), str(exc)) from exc
    return path


def remove_descriptor(path: Path | None) -> None:
    """Delete a descriptor file if present; failures are only logged."""
    if path is None:
        return
    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.warning("Could not remove session descriptor %s", path, exc_info=True)
