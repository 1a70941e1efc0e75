class EventSource(object):
    """
    A list of handlers that are all called each time an event is fired.
    Handlers can be added and removed from any thread; fire() calls the handlers
    registered at the time it was invoked.
    """

    def __init__(self):
        self._handlers = []

    def __iadd__(self, handler):
        return self.add(handler)

    def __isub__(self, handler):
        return self.remove(handler)

    def add(self, handler):
        if handler not in self._handlers:
            self._handlers = self._handlers + [handler]
        return self

    def remove(self, handler):
        if handler in self._handlers:
            self._handlers = [h for h in self._handlers if h != handler]
        return self

    def handlers(self):
        return tuple(self._handlers)

    def fire(self, *args, **kwargs):
        self._fire(*args, **kwargs)

    def _fire(self, *args, **kwargs):
        for handler in self.handlers():
            handler(*args, **kwargs)
