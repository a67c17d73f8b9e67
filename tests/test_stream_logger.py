import tempfile
import unittest
from pathlib import Path

from chesslink.stream_logger import StreamRecorder


class StreamRecorderTests(unittest.TestCase):
    def test_lines_append_across_connections(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            log_dir = Path(tmp) / "logs"
            recorder = StreamRecorder(log_dir, "ab/c d")

            recorder.mark_connect(1)
            recorder.record('{"type": "gameFull"}\n')
            StreamRecorder(log_dir, "ab/c d").mark_connect(2)
            recorder.record('{"type": "gameState"}')

            self.assertEqual(recorder.path.name, "stream_ab_c_d.ndjson")
            lines = recorder.path.read_text(encoding="utf-8").splitlines()
            self.assertEqual([l for l in lines if not l.startswith("#")], ['{"type": "gameFull"}', '{"type": "gameState"}'])
            self.assertEqual(sum("connect attempt" in l for l in lines), 2)


if __name__ == "__main__":
    unittest.main()
