"""
Event Broadcaster - Quản lý Server-Sent Events (SSE)
Đẩy thay đổi trạng thái phân tích ảnh lớp tới các client đang kết nối
"""
import itertools
import json
import queue
import threading
from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, List, Optional


class EventBroadcaster:
    """Phát sự kiện photo_status tới mọi client SSE.

    Mỗi sự kiện có id tăng dần. Trạng thái gần nhất của các ảnh chưa kết
    thúc được giữ lại để client mới kết nối nhận ngay (replay).
    """

    def __init__(self, logger=None, queue_size: int = 50):
        self.clients: List[queue.Queue] = []
        self.clients_lock = threading.Lock()
        self.logger = logger
        self.queue_size = queue_size
        self._sequence = itertools.count(1)
        self._in_flight: "OrderedDict[str, str]" = OrderedDict()

    def add_client(self, replay: bool = True) -> queue.Queue:
        """Đăng ký client mới, gửi trước trạng thái các ảnh đang xử lý."""
        client_queue = queue.Queue(maxsize=self.queue_size)

        with self.clients_lock:
            if replay:
                for message in self._in_flight.values():
                    client_queue.put_nowait(message)
            self.clients.append(client_queue)
            total = len(self.clients)

        if self.logger:
            self.logger.info(f"[SSE] New client connected. Total: {total}")
        return client_queue

    def remove_client(self, client_queue: queue.Queue):
        with self.clients_lock:
            if client_queue not in self.clients:
                return
            self.clients.remove(client_queue)
            remaining = len(self.clients)

        if self.logger:
            self.logger.info(f"[SSE] Client disconnected. Remaining: {remaining}")

    def broadcast_event(self, event_data: Dict[str, Any]):
        """
        Broadcast event đến tất cả clients

        Args:
            event_data: {'type': 'photo_status', 'data': {...}}; timestamp
                được thêm nếu chưa có
        """
        event = dict(event_data)
        event.setdefault('timestamp', datetime.now().isoformat())
        stale = []
        with self.clients_lock:
            # Id order must match enqueue order
            message = self.format_sse_message(event, event_id=next(self._sequence))
            self._remember(event, message)
            for client_queue in self.clients:
                try:
                    client_queue.put_nowait(message)
                except queue.Full:
                    # Client không đọc kịp, ngắt kết nối
                    stale.append(client_queue)
            client_count = len(self.clients)

        for client_queue in stale:
            if self.logger:
                self.logger.warning("[SSE] Client queue full, dropping client")
            self.remove_client(client_queue)

        if self.logger and client_count:
            self.logger.debug(f"[SSE] Broadcast {event.get('type', 'unknown')} to {client_count} clients")

    def _remember(self, event: Dict[str, Any], message: str):
        if event.get('type') != 'photo_status':
            return
        data = event.get('data') or {}
        key = str(data.get('photo_id'))
        if data.get('status') in ('completed', 'failed'):
            self._in_flight.pop(key, None)
        else:
            self._in_flight[key] = message
            self._in_flight.move_to_end(key)
            while len(self._in_flight) > self.queue_size:
                self._in_flight.popitem(last=False)

    @staticmethod
    def format_sse_message(event_data: Dict[str, Any], event_id: Optional[int] = None) -> str:
        """SSE format: id / event / data, kết thúc bằng dòng trống"""
        lines = []
        if event_id is not None:
            lines.append(f"id: {event_id}")
        lines.append(f"event: {event_data.get('type', 'message')}")
        lines.append(f"data: {json.dumps(event_data, default=str)}")
        return "\n".join(lines) + "\n\n"

    def broadcast_photo_status(self, photo_id, status: str, error: Optional[str] = None):
        data = {'photo_id': photo_id, 'status': status}
        if error:
            data['error'] = error
        self.broadcast_event({'type': 'photo_status', 'data': data})

    def in_flight_count(self) -> int:
        with self.clients_lock:
            return len(self._in_flight)

    def get_client_count(self) -> int:
        with self.clients_lock:
            return len(self.clients)
