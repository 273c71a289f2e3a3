import hashlib, json, logging
from typing import List, Dict, Any, Optional
from models import AuditBlock
import config

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64


class Block:
    def __init__(self, index:int, previous_hash:str, timestamp:int, record:Optional[Dict[str,Any]], nonce:int=0):
        self.index = index
        self.previous_hash = previous_hash
        self.timestamp = timestamp
        self.record = record
        self.nonce = nonce
        self.hash = self.compute_hash()

    def compute_hash(self) -> str:
        block_string = json.dumps({
            "index": self.index,
            "previous_hash": self.previous_hash,
            "timestamp": self.timestamp,
            "record": self.record,
            "nonce": self.nonce
        }, sort_keys=True)
        return hashlib.sha256(block_string.encode()).hexdigest()

    def to_dict(self):
        return {
            "index": self.index,
            "previous_hash": self.previous_hash,
            "timestamp": self.timestamp,
            "record": self.record,
            "nonce": self.nonce,
            "hash": self.hash
        }

    @classmethod
    def from_row(cls, row: AuditBlock) -> "Block":
        block = cls(row.index, row.previous_hash, row.timestamp, row.record, row.nonce)
        block.hash = row.hash
        return block


class AuditChain:
    """Hash-chained audit log, one chain per scope (an election key or "ownership").

    Blocks are written through the caller's session, so a block exists only
    if the state change it describes was committed with it.
    """

    def __init__(self, difficulty: int = config.POW_DIFFICULTY):
        self.difficulty = difficulty

    def create_genesis_block(self, timestamp: int) -> Block:
        return self.mine(Block(0, GENESIS_HASH, timestamp, None, 0))

    def last_block(self, session, scope: str) -> Optional[Block]:
        row = (session.query(AuditBlock)
               .filter_by(scope=scope)
               .order_by(AuditBlock.index.desc())
               .first())
        return Block.from_row(row) if row else None

    # one audit record = one block
    def append(self, session, scope: str, record: Dict[str,Any]) -> Block:
        timestamp = record["timestamp"]
        last = self.last_block(session, scope)
        if last is None:
            last = self.create_genesis_block(timestamp)
            self._store(session, scope, last)
        new_block = Block(
            index=last.index + 1,
            previous_hash=last.hash,
            timestamp=timestamp,
            record=record,
            nonce=0
        )
        self.mine(new_block)
        self._store(session, scope, new_block)
        return new_block

    def proof_of_work(self, block: Block) -> str:
        block.nonce = 0
        computed_hash = block.compute_hash()
        target_prefix = "0" * self.difficulty
        while not computed_hash.startswith(target_prefix):
            block.nonce += 1
            computed_hash = block.compute_hash()
        return computed_hash

    def mine(self, block: Block) -> Block:
        block.hash = self.proof_of_work(block)
        return block

    def _store(self, session, scope: str, block: Block):
        session.add(AuditBlock(scope=scope, index=block.index, previous_hash=block.previous_hash,
                               timestamp=block.timestamp, record=block.record,
                               nonce=block.nonce, hash=block.hash))
        session.flush()

    def blocks(self, session, scope: str) -> List[Block]:
        rows = (session.query(AuditBlock)
                .filter_by(scope=scope)
                .order_by(AuditBlock.index)
                .all())
        return [Block.from_row(r) for r in rows]

    def records(self, session, scope: str) -> List[Dict[str,Any]]:
        return [b.record for b in self.blocks(session, scope)[1:]]

    def to_list(self, session, scope: str) -> List[Dict[str,Any]]:
        return [b.to_dict() for b in self.blocks(session, scope)]

    def is_valid_chain(self, session, scope: str) -> bool:
        chain = self.blocks(session, scope)
        for i in range(1, len(chain)):
            curr = chain[i]
            prev = chain[i-1]
            if curr.previous_hash != prev.hash:
                logger.error("Audit chain %s broken at block %d: previous hash mismatch", scope, curr.index)
                return False
            if curr.compute_hash() != curr.hash:
                logger.error("Audit chain %s broken at block %d: hash mismatch", scope, curr.index)
                return False
            if not curr.hash.startswith("0" * self.difficulty):
                logger.error("Audit chain %s broken at block %d: proof of work missing", scope, curr.index)
                return False
        return True
