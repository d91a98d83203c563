"""
Incremental note-commitment trees and witnesses.

A ``CommitmentTree`` records the frontier of an append-only, fixed-depth
Merkle tree: the two lowest leaves (``left``/``right``) and one optional
hash per higher level (``parents``).  A ``Witness`` pairs a tree snapshot
(taken right after the witnessed leaf was appended) with the hashes that
later appends contributed, which is exactly what is needed to rebuild
the authentication path and the current root.

Serialized layout (both parameterized by the tree depth)
--------------------------------------------------------
    tree    = optional<left> optional<right> optional<parent> * depth
    witness = tree sequence<filled> optional<cursor tree>

Each ``optional`` is a presence byte followed by a 32-byte hash.  An
absent slot stays ``None``; it is never a zero hash.

Light-client wallets write the same shapes with a compact-size count in
front of the parents (``parse_counted``); the missing upper slots are
absent.

The combining function is pluggable.  ``Sha256TreeHasher`` is the
default; protocol hashers (Pedersen, Sinsemilla) can be supplied by any
object with ``empty_leaf`` and ``combine(level, left, right)``.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Iterable, Protocol

from zmigrate_core.blob import U256
from zmigrate_core.crypto_utils import sha256
from zmigrate_core.parser import Parser, Writer, decode, decode_optional, decode_vec

SPROUT_DEPTH = 29
SAPLING_DEPTH = 32
ORCHARD_DEPTH = 32


# ═══════════════════════════════════════════════════════════════════
#  Hashers
# ═══════════════════════════════════════════════════════════════════

class TreeHasher(Protocol):
    empty_leaf: U256

    def combine(self, level: int, left: U256, right: U256) -> U256: ...


class Sha256TreeHasher:
    """``SHA-256(level || left || right)`` with an all-zero empty leaf."""

    empty_leaf = U256.zero()

    def combine(self, level: int, left: U256, right: U256) -> U256:
        return U256(sha256(bytes([level]) + left.to_bytes() + right.to_bytes()))


DEFAULT_HASHER = Sha256TreeHasher()


class EmptyRoots:
    """Roots of all-empty subtrees, per height, computed once per hasher."""

    def __init__(self, hasher: TreeHasher, depth: int) -> None:
        roots = [hasher.empty_leaf]
        for level in range(depth):
            roots.append(hasher.combine(level, roots[-1], roots[-1]))
        self._roots = roots

    def __getitem__(self, height: int) -> U256:
        return self._roots[height]


class PathFiller:
    """Supplies missing right-hand siblings: queued hashes first, then empty roots."""

    def __init__(self, empty: EmptyRoots, queue: Iterable[U256] = ()) -> None:
        self._empty = empty
        self._queue = deque(queue)

    def next(self, height: int) -> U256:
        if self._queue:
            return self._queue.popleft()
        return self._empty[height]


@dataclass(frozen=True)
class MerklePath:
    """Authentication path of one leaf, siblings ordered bottom-up."""

    auth_path: tuple[U256, ...]
    position: int

    def root(self, leaf: U256, hasher: TreeHasher = DEFAULT_HASHER) -> U256:
        """Combine *leaf* with its siblings, honouring left/right order."""
        node = leaf
        for level, sibling in enumerate(self.auth_path):
            if (self.position >> level) & 1:
                node = hasher.combine(level, sibling, node)
            else:
                node = hasher.combine(level, node, sibling)
        return node


# ═══════════════════════════════════════════════════════════════════
#  Tree
# ═══════════════════════════════════════════════════════════════════

@dataclass
class CommitmentTree:
    """
    Frontier of a fixed-depth append-only Merkle tree.

    Parameters
    ----------
    depth : int
        Tree height; ``parents`` always holds exactly this many slots.
    hasher : TreeHasher
        Node combining function.
    """

    depth: int
    left: U256 | None = None
    right: U256 | None = None
    parents: list[U256 | None] = field(default_factory=list)
    hasher: TreeHasher = field(default=DEFAULT_HASHER, compare=False, repr=False)

    TYPE_NAME = "CommitmentTree"

    def __post_init__(self) -> None:
        if not self.parents:
            self.parents = [None] * self.depth
        if len(self.parents) != self.depth:
            raise ValueError(
                f"tree of depth {self.depth} needs {self.depth} parent slots, "
                f"got {len(self.parents)}"
            )

    # ── wire format ────────────────────────────────────────────────

    @classmethod
    def parse_with_param(cls, p: Parser, depth: int) -> "CommitmentTree":
        left = decode_optional(p, U256, "left")
        right = decode_optional(p, U256, "right")
        with p.context("parents"):
            parents = [decode_optional(p, U256) for _ in range(depth)]
        return cls(depth, left, right, parents)

    @classmethod
    def parse_counted(cls, p: Parser, depth: int) -> "CommitmentTree":
        left = decode_optional(p, U256, "left")
        right = decode_optional(p, U256, "right")
        with p.context("parents"):
            count = p.read_compact_size()
            if count > depth:
                raise p.invalid(f"{count} parent slots exceed tree depth {depth}")
            parents = [decode_optional(p, U256) for _ in range(count)]
        return cls(depth, left, right, parents + [None] * (depth - count))

    def encode(self, w: Writer) -> Writer:
        w.write_optional(self.left, lambda w, h: h.encode(w))
        w.write_optional(self.right, lambda w, h: h.encode(w))
        for parent in self.parents:
            w.write_optional(parent, lambda w, h: h.encode(w))
        return w

    # ── queries ────────────────────────────────────────────────────

    def empty_roots(self) -> EmptyRoots:
        return EmptyRoots(self.hasher, self.depth)

    def empty_root(self) -> U256:
        return self.empty_roots()[self.depth]

    def size(self) -> int:
        n = (self.left is not None) + (self.right is not None)
        for i, parent in enumerate(self.parents):
            if parent is not None:
                n += 1 << (i + 1)
        return n

    def last(self) -> U256:
        """The most recently appended leaf."""
        if self.right is not None:
            return self.right
        if self.left is not None:
            return self.left
        raise ValueError("tree has no leaves")

    def is_complete(self, depth: int | None = None) -> bool:
        depth = self.depth if depth is None else depth
        if self.left is None or self.right is None:
            return False
        return all(parent is not None for parent in self.parents[:depth - 1])

    def next_depth(self, skip: int) -> int:
        """Height of the next incomplete subtree after skipping *skip* complete ones."""
        if self.left is None:
            if skip:
                skip -= 1
            else:
                return 0
        if self.right is None:
            if skip:
                skip -= 1
            else:
                return 0
        d = 1
        for parent in self.parents[:self.depth - 1]:
            if parent is None:
                if skip:
                    skip -= 1
                else:
                    return d
            d += 1
        return d + skip

    def root(self, depth: int | None = None, filler: PathFiller | None = None) -> U256:
        """
        Root of the tree truncated to *depth* levels.  Missing siblings
        are taken from *filler* (empty roots by default).
        """
        depth = self.depth if depth is None else depth
        if self.parents[self.depth - 1] is not None:
            raise ValueError("top parent slot is set; tree exceeds its depth")
        filler = filler or PathFiller(self.empty_roots())
        left = self.left if self.left is not None else filler.next(0)
        right = self.right if self.right is not None else filler.next(0)
        node = self.hasher.combine(0, left, right)
        for d in range(1, depth):
            parent = self.parents[d - 1]
            if parent is not None:
                node = self.hasher.combine(d, parent, node)
            else:
                node = self.hasher.combine(d, node, filler.next(d))
        return node

    def path(self, filler: PathFiller | None = None) -> MerklePath:
        """Authentication path of the last appended leaf."""
        if self.left is None:
            raise ValueError("tree has no leaves")
        filler = filler or PathFiller(self.empty_roots())
        siblings: list[U256] = []
        if self.right is not None:
            siblings.append(self.left)
        else:
            siblings.append(filler.next(0))
        for d in range(1, self.depth):
            parent = self.parents[d - 1]
            siblings.append(parent if parent is not None else filler.next(d))
        return MerklePath(tuple(siblings), self.size() - 1)

    # ── mutation ───────────────────────────────────────────────────

    def append(self, leaf: U256) -> None:
        if self.is_complete():
            raise ValueError(f"tree of depth {self.depth} is full")
        if self.left is None:
            self.left = leaf
            return
        if self.right is None:
            self.right = leaf
            return
        combined = self.hasher.combine(0, self.left, self.right)
        self.left, self.right = leaf, None
        for i in range(self.depth - 1):
            parent = self.parents[i]
            if parent is None:
                self.parents[i] = combined
                return
            combined = self.hasher.combine(i + 1, parent, combined)
            self.parents[i] = None

    def copy(self) -> "CommitmentTree":
        return CommitmentTree(
            self.depth, self.left, self.right, list(self.parents), self.hasher
        )


# ═══════════════════════════════════════════════════════════════════
#  Witness
# ═══════════════════════════════════════════════════════════════════

@dataclass
class Witness:
    """
    Tree snapshot at the witnessed leaf plus the subtree roots (``filled``)
    and the incomplete subtree (``cursor``) contributed by later leaves.
    """

    tree: CommitmentTree
    filled: list[U256] = field(default_factory=list)
    cursor: CommitmentTree | None = None

    TYPE_NAME = "Witness"

    @classmethod
    def from_tree(cls, tree: CommitmentTree) -> "Witness":
        return cls(tree.copy())

    @classmethod
    def parse_with_param(cls, p: Parser, depth: int) -> "Witness":
        return cls._parse(p, depth, CommitmentTree.parse_with_param)

    @classmethod
    def parse_counted(cls, p: Parser, depth: int) -> "Witness":
        return cls._parse(p, depth, CommitmentTree.parse_counted)

    @classmethod
    def _parse(cls, p: Parser, depth: int, read_tree) -> "Witness":
        tree = cls._parse_tree(p, depth, "tree", read_tree)
        filled = list(decode_vec(p, U256, "filled"))
        with p.context("cursor"):
            flag = p.read_u8()
            if flag > 1:
                raise p.invalid(f"optional presence flag must be 0 or 1, got {flag}")
            cursor = cls._parse_tree(p, depth, None, read_tree) if flag else None
        return cls(tree, filled, cursor)

    @staticmethod
    def _parse_tree(p: Parser, depth: int, label: str | None, read_tree) -> CommitmentTree:
        with p.context(label), p.context("decoding CommitmentTree"):
            return read_tree(p, depth)

    def encode(self, w: Writer) -> Writer:
        self.tree.encode(w)
        w.write_vec(self.filled, lambda w, h: h.encode(w))
        return w.write_optional(self.cursor, lambda w, t: t.encode(w))

    @property
    def depth(self) -> int:
        return self.tree.depth

    @property
    def hasher(self) -> TreeHasher:
        return self.tree.hasher

    def _cursor_depth(self) -> int:
        return self.tree.next_depth(len(self.filled))

    def partial_path(self) -> list[U256]:
        hashes = list(self.filled)
        if self.cursor is not None:
            cursor_filler = PathFiller(self.tree.empty_roots())
            hashes.append(self.cursor.root(self._cursor_depth(), cursor_filler))
        return hashes

    def _filler(self) -> PathFiller:
        return PathFiller(self.tree.empty_roots(), self.partial_path())

    def position(self) -> int:
        return self.tree.size() - 1

    def element(self) -> U256:
        return self.tree.last()

    def root(self) -> U256:
        return self.tree.root(self.depth, self._filler())

    def path(self) -> MerklePath:
        return self.tree.path(self._filler())

    def append(self, leaf: U256) -> None:
        if self.cursor is not None:
            depth = self._cursor_depth()
            self.cursor.append(leaf)
            if self.cursor.is_complete(depth):
                self.filled.append(
                    self.cursor.root(depth, PathFiller(self.tree.empty_roots()))
                )
                self.cursor = None
            return
        depth = self._cursor_depth()
        if depth >= self.depth:
            raise ValueError(f"tree of depth {self.depth} is full")
        if depth == 0:
            self.filled.append(leaf)
        else:
            self.cursor = CommitmentTree(self.depth, hasher=self.hasher)
            self.cursor.append(leaf)


# ── Protocol-specific constructors ──────────────────────────────

def sprout_tree(hasher: TreeHasher = DEFAULT_HASHER) -> CommitmentTree:
    return CommitmentTree(SPROUT_DEPTH, hasher=hasher)


def sapling_tree(hasher: TreeHasher = DEFAULT_HASHER) -> CommitmentTree:
    return CommitmentTree(SAPLING_DEPTH, hasher=hasher)


def orchard_tree(hasher: TreeHasher = DEFAULT_HASHER) -> CommitmentTree:
    return CommitmentTree(ORCHARD_DEPTH, hasher=hasher)


def empty_root(depth: int, hasher: TreeHasher = DEFAULT_HASHER) -> U256:
    """Canonical root of a depth-*depth* tree with no leaves."""
    return EmptyRoots(hasher, depth)[depth]
