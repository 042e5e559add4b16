# fasthttpkit

Small pieces for HTTP servers and their tests:

- `fasthttpkit.pipeconns` provides `PipeConns`, a buffered two-way connection
  pipe held in process memory. It supports read and write deadlines.
- `fasthttpkit.inmemory_listener` provides `InmemoryListener`. Its `accept()`
  returns the server side of each connection that `dial()` creates. No network
  stack is involved.
- `fasthttpkit.fsutil` parses `Range: bytes=...` header values and strips or
  rewrites request paths. It also finds file extensions and modification
  times.
- `fasthttpkit.fscache` provides `FSFile`, a cached open file or generated
  directory index. Its readers (`SmallFileReader`, `BigFileReader`) honour byte
  ranges. `FileCache` expires stale entries.
- `fasthttpkit.fsopen` provides `FileOpener`, which opens files under a root
  directory. It keeps gzip copies of compressible files on disk, detects
  content types and generates HTML directory index pages.

The package has no runtime dependencies.

## Installation

```
pip install fasthttpkit
```

## Pipes and in-memory listeners

```python
from fasthttpkit.inmemory_listener import InmemoryListener

ln = InmemoryListener()
client = ln.dial()
server = ln.accept()

client.write(b"request_1")
assert server.read(30) == b"request_1"
server.write(b"response_1")
assert client.read(30) == b"response_1"

ln.close()
```

`dial()` and `accept()` raise `ListenerClosedError` after the listener has
been closed. Closing a listener a second time also raises it.

Writes go into a buffer, so a write does not wait for a reader until four
chunks are pending. A single `read(size)` waits only for the first chunk. It
then collects whatever else is already buffered, up to `size` bytes.

Deadlines are `time.time()` values or `datetime` objects. `None` turns a
deadline off. When a deadline passes, `read` or `write` raises
`PipeTimeoutError`. Closing either end closes the whole pipe. After that,
`write` raises `ConnectionClosedError`. `read` returns any data still buffered,
then `b""`.

```python
import time
from fasthttpkit.pipeconns import PipeConns, PipeTimeoutError

pc = PipeConns()
c1 = pc.conn1()
c1.set_read_deadline(time.time() + 0.001)
try:
    c1.read(1)
except PipeTimeoutError:
    pass
```

## Byte ranges and paths

```python
from fasthttpkit.fsutil import (
    file_extension,
    parse_byte_range,
    strip_leading_slashes,
    vhost_path,
)

parse_byte_range(b"bytes=-123", 456)      # (333, 455)
parse_byte_range("bytes=1-2345", 234)     # (1, 233)
strip_leading_slashes("/foo/bar/baz", 1)  # "/bar/baz"
file_extension("foo.bar.baz.fasthttp.gz", True, ".fasthttp.gz")  # ".baz"
vhost_path("foobar.com", "/foo/bar", 0)   # "/foobar.com/foo/bar"
```

`parse_byte_range` raises `ByteRangeError` when a range is malformed or
cannot be satisfied. `vhost_path` replaces an empty host, or a host that
contains a slash, with `invalid-host`.

## Opening and serving files

```python
from fasthttpkit.fscache import FileCache
from fasthttpkit.fsopen import FileOpener

opener = FileOpener("/srv/static", index_names=["index.html"], generate_index_pages=True)
cache = FileCache(cache_duration=10.0)

ff = cache.acquire("/hello.txt") or cache.put("/hello.txt", opener.open_file("/hello.txt", False))
with ff.new_reader() as reader:
    reader.update_byte_range(0, 4)    # inclusive range
    first_bytes = reader.read()

cache.clean()  # releases entries older than cache_duration once no reader uses them
```

`open_file(path, must_compress=True)` works with a gzip copy of the file. The
copy sits next to the original, named with the `.fasthttp.gz` suffix. It is
created if it is missing and re-created if it is stale. The copy is used only
when it compresses well and the original is no larger than 8 MiB. If no copy
can be created, `open_file` raises `NoCreatePermissionError`. For a directory,
`open_file` raises `DirIndexRequiredError`. In that case,
`open_index_file(dir_path, base_path, must_compress)` tries the configured
index names. If none of them exists, it generates a listing, or raises
`PermissionError` when index pages are disabled.

Each `acquire()` or `put()` on a `FileCache` takes one reference to the file.
Closing a reader gives that reference back.

## What this package does not do

There is no HTTP server, request parser or request handler here. Nothing
reads request headers, checks `If-Modified-Since` or writes responses. The
pieces above are meant to be wired into such a handler by the caller.

## Running the tests

```
pip install -e .[test]
pytest
```