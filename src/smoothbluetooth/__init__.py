"""


Managed RFCOMM connection

- Device: a peer identified by its hardware address. Paired devices are known to the platform
  without discovery, other devices are found by scanning.
- Radio: the platform capability injected into everything else. Reports whether the adapter is
  present and powered, lists paired devices, runs discovery and opens channels.
- Channel: a bi-directional byte stream to a peer. Provides file-like input and output streams,
  and can be closed from any thread to unblock a pending read, accept or connect.
- Workers
 - ListenWorker blocks accepting one inbound channel
 - ConnectWorker blocks opening one outbound channel to a chosen device
 - SessionWorker owns an established channel, pumps the input stream and serializes writes

- ConnectionStateMachine - owns the connection state (idle, listening, connecting, connected)
  and the worker handles. Starts and cancels workers, and turns worker outcomes into lifecycle
  events. Whenever a connect attempt fails or an established session is lost, it goes back to
  listening.
- EventDispatcher - every event destined for the Listener is queued and delivered on one
  background thread, so a listener sees a strictly ordered history.
- SmoothBluetooth - the consumer facing surface: checks the radio, prefers paired devices,
  falls back to discovery, and sends data.


## Threading

Each worker runs on its own daemon thread doing blocking I/O. The only way to unblock a worker
is to close its channel, so cancelling a worker is "close the channel, then join the thread".

Workers report back by calling the state machine, which briefly takes the transition lock.
The lock is never held while joining a thread or doing channel I/O. A worker that has been
superseded may still report an outcome; the state machine recognizes it is no longer current
and discards it (closing any channel it brought along).

"""
