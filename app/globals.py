"""
Global state module
Các service instance dùng chung, được khởi tạo trong app/__init__.py
"""

# Singleton instances (sẽ được khởi tạo trong create_app)
db = None
embedder = None
matcher = None
notifier = None
processor = None
event_broadcaster = None
executor = None
