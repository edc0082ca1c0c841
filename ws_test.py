import asyncio
import io
import json
import sys
import wave
from pathlib import Path

import numpy as np
import websockets

SEND_CHUNK_BYTES = 256 * 1024


def _tone_wav(seconds: int = 3, sample_rate: int = 16000) -> bytes:
    t = np.linspace(0, seconds, sample_rate * seconds, dtype=np.float32)
    tone = (np.sin(2 * np.pi * 440 * t) * 16000).astype(np.int16)
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(tone.tobytes())
    return buf.getvalue()


async def test(path=None):
    uri = "ws://localhost:8000/ws/transcribe"
    if path:
        file_name = Path(path).name
        data = Path(path).read_bytes()
    else:
        file_name = "tone.wav"
        data = _tone_wav()

    async with websockets.connect(uri, close_timeout=2, max_size=None) as ws:
        await ws.send(json.dumps({"type": "start", "file_name": file_name}))
        print(f"Sent start for {file_name} ({len(data)} bytes)")

        total_chunks = (len(data) + SEND_CHUNK_BYTES - 1) // SEND_CHUNK_BYTES
        for i in range(0, len(data), SEND_CHUNK_BYTES):
            await ws.send(data[i:i + SEND_CHUNK_BYTES])
            print(f"Sent chunk {i // SEND_CHUNK_BYTES + 1}/{total_chunks}")

        await ws.send(json.dumps({"type": "end"}))
        print("Sent end, waiting...\n")

        async for msg in ws:
            event = json.loads(msg)
            if event["type"] == "complete":
                print(event["data"]["text"])
                print(f"\nProcessing time: {event['data']['processingTime']}")
                break
            print(json.dumps(event, indent=2, ensure_ascii=False))
            if event["type"] == "error":
                break

    print("\nDone.")


if __name__ == "__main__":
    path = sys.argv[1] if len(sys.argv) > 1 else None
    try:
        asyncio.run(test(path))
    except websockets.exceptions.ConnectionClosedError:
        pass
