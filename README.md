# bfcfs

`bfcfs` opens BFC container files and presents their contents as a read-only
filesystem tree. A container has a fixed 4096-byte header, a sequence of
objects, an index and a 56-byte footer that points at that index. The package
has no dependencies outside the standard library.

## Installing

    pip install .

## Mounting a container

`bfcfs.super.mount` takes an option string in the usual comma-separated form:

- `source=PATH`: the container file (required)
- `verify=none|shallow|deep`: verification level (default `shallow`)
- `key=DESC`: keyring descriptor. When it is left at its default, `bfcfs:`,
  the loaded index sets it to `bfcfs:<uuid>` using the container's UUID.
- `noreadahead`: sets `MountOptions.noreadahead`

```python
from bfcfs.super import mount

with mount("source=archive.bfc,verify=none") as fs:
    root = fs.root()
    items, next_pos = fs.readdir(root.entry_id, 0)
    for item in items:
        print(item.name, item.ino, item.d_type)

    entry = fs.lookup(root.entry_id, "hello.txt")
    if entry is not None:
        print(fs.read(entry.entry_id, 0, 4096))

    print(fs.statfs())
```

`BfcFilesystem.readdir` returns a list of `DirEntry` values and the position
to pass to the next call. Positions 0 and 1 are `.` and `..`. After them come
the children in index order, at most 100 per call. An `entry_id` of `None`
stands for the synthetic root. That root is used when the container has no
`/` entry, and it lists the entries whose paths contain no slash.

`BfcFilesystem.readlink` returns a symlink's target. `BfcFilesystem.close`, or
leaving the `with` block, closes the backing file and drops the index.

`mount` raises `bfcfs.format.BfcfsError`, or one of its subclasses, in these
cases:

- the options are invalid (`OptionError`)
- the backing file is missing, unreadable, not a regular file or too small
- the header magic or block size is bad
- the footer is bad
- the index is malformed (`FormatError`)

Each error carries a matching system error number in `errno`.

## Lower-level pieces

- `bfcfs.opts.parse_mount_options` parses an option string into
  `MountOptions`.
- `bfcfs.format` decodes the on-disk header, footer and object headers.
- `bfcfs.index.load_index` reads a container from any binary stream and
  returns a `ContainerIndex`. `ContainerIndex.find_entry` and
  `ContainerIndex.children` query it.
- `bfcfs.inode` provides `iget`, `lookup`, `readdir`, `read_file`,
  `get_link` and `make_root_inode`, which work over a loaded
  `ContainerIndex`.
- `bfcfs.data.read_page` reads one page of an entry's content, padded with
  zeros. `bfcfs.data.readahead` yields pages and gives `None` for any page
  that fails.
- `bfcfs.verify.crc32c` computes CRC32C checksums.
  `bfcfs.verify.verify_chunk_crc` raises `ChecksumError` on a mismatch.

## What it does not do

- There are no commands. The package is used as a library.
- Compressed and encrypted content is not decoded.
  - `read_page` raises `NotSupportedError` for such entries.
  - `read_file` and `BfcFilesystem.read` return the stored bytes unchanged.
  - `CryptoContext.decrypt_chunk` always raises `NotSupportedError`.
  - A warning is logged when a container advertises encryption.
- The index checksum is computed and compared, but a mismatch is only logged.
- `verify_container` runs no checks at any level.
- The `noreadahead` option is recorded but changes nothing.
- Entries that are not directories, regular files or symlinks raise
  `NotSupportedError` from `iget`.