"""
Background threads that run a template method until they are signalled to stop.
"""
import logging
import threading

logger = logging.getLogger(__name__)


class BackgroundThread:
    """ Continually runs loop() on a background thread.
        Exceptions are logged and posted to exception_handler().
        The background thread is registered as a daemon, so a thread stuck in
        blocking I/O never holds up interpreter exit.
    """

    def __init__(self, name=None, log=logger):
        """
        :param name the name given to the background thread
        :param log the logger used to report exceptions
        """
        self.name = name
        self.stop_event = threading.Event()
        self.background_thread = None
        self.logger = log
        self._start_lock = threading.Lock()

    def start(self):
        """
        Starts the background thread. Calling start() again, or after stop(), does nothing.
        """
        with self._start_lock:
            if self.background_thread is None and self.running():
                t = threading.Thread(target=self._run, name=self.name)
                t.daemon = True
                self.background_thread = t
                t.start()

    def exception_handler(self, e):
        self.logger.exception(e)

    def _run(self):
        """ The processing loop for the background thread.
             Invokes loop() for as long as the stop signal is not received.
        """
        self._do(self.startup)
        while self.running():
            self._do(self.loop)
        self._do(self.shutdown)
        self.logger.debug("%s exiting" % self.name)

    def _do(self, callme):
        """ runs a function and captures any exceptions """
        try:
            callme()
        except Exception as e:
            self.exception_handler(e)

    def startup(self):
        """ template method called when the thread starts"""
        pass

    def loop(self):
        """ template method called repeatedly until the thread is stopped """
        raise NotImplementedError

    def shutdown(self):
        """ template method called when the thread exits """
        pass

    def running(self):
        return not self.stop_event.is_set()

    @property
    def alive(self) -> bool:
        thread = self.background_thread
        return thread is not None and thread.is_alive()

    def signal_stop(self):
        """ asks the loop to exit once the current iteration completes. Does not wait. """
        self.stop_event.set()

    def join(self, timeout=None) -> bool:
        """
        Waits for the background thread to exit. Joining from the background thread itself returns at once.
        :return: True if the thread has exited (or was never started.)
        """
        thread = self.background_thread
        if thread is None or thread is threading.current_thread():
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def stop(self, timeout=None) -> bool:
        self.signal_stop()
        return self.join(timeout)
