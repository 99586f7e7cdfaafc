from __future__ import annotations

from ..extensions import db
from chaintrace.time_utils import to_utc_z


# Users a manufacturer has granted QR visibility to, per product.
product_qr_grants = db.Table(
    "product_qr_grants",
    db.Column("product_id", db.Integer, db.ForeignKey("products.id"), primary_key=True),
    db.Column("user_id", db.Integer, db.ForeignKey("users.id"), primary_key=True),
)


class Product(db.Model):
    """
    Off-chain mirror of one registry product.

    INVARIANTS:
    - blockchain_id is assigned once, by the chain, when the creation
      transaction confirms. The row is written only after that.
    - manufacturer_id never changes after creation.
    - current_holder_id / sender_id are an advisory cache of the last
      confirmed transfer. The chain is authoritative for ownership.
    - requires_partnership is True for every product created by this
      service; False only survives on legacy rows.
    - Rows are never deleted.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_manufacturer_created", "manufacturer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    blockchain_id = db.Column(db.Integer, nullable=False, unique=True, index=True)
    unique_product_id = db.Column(db.String(128), nullable=True, index=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    manufacture_date = db.Column(db.DateTime(timezone=True), nullable=False)

    manufacturer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Set iff the product was minted as part of a batch
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=True, index=True)
    batch_blockchain_id = db.Column(db.Integer, nullable=True, index=True)
    product_number_in_batch = db.Column(db.Integer, nullable=True)

    current_holder_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    sender_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    # Backwards compatibility: legacy rows default to ungated
    requires_partnership = db.Column(db.Boolean, nullable=False, default=False)

    qr_code_url = db.Column(db.Text, nullable=True)
    qr_visible = db.Column(db.Boolean, nullable=False, default=True)

    zk_proof = db.Column(db.JSON, nullable=True)
    zk_proof_generated = db.Column(db.Boolean, nullable=False, default=False)
    zk_proof_generated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    manufacturer = db.relationship("User", foreign_keys=[manufacturer_id])
    current_holder = db.relationship("User", foreign_keys=[current_holder_id])
    sender = db.relationship("User", foreign_keys=[sender_id])
    batch = db.relationship("Batch", back_populates="products")
    qr_access_granted_to = db.relationship("User", secondary=product_qr_grants, lazy="selectin")

    def __repr__(self) -> str:
        return f"<Product id={self.id} blockchain_id={self.blockchain_id} uid={self.unique_product_id!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "blockchainId": self.blockchain_id,
            "uniqueProductId": self.unique_product_id,
            "name": self.name,
            "description": self.description,
            "manufactureDate": to_utc_z(self.manufacture_date),
            "manufacturer": self.manufacturer.to_summary() if self.manufacturer else None,
            "batchId": self.batch_id,
            "batchBlockchainId": self.batch_blockchain_id,
            "productNumberInBatch": self.product_number_in_batch,
            "currentHolder": self.current_holder_id,
            "sender": self.sender.to_summary() if self.sender else None,
            "requiresPartnership": self.requires_partnership,
            "qrCodeUrl": self.qr_code_url,
            "qrVisible": self.qr_visible,
            "zkProof": self.zk_proof,
            "zkProofGenerated": self.zk_proof_generated,
            "zkProofGeneratedAt": to_utc_z(self.zk_proof_generated_at) if self.zk_proof_generated_at else None,
            "createdAt": to_utc_z(self.created_at),
            "updatedAt": to_utc_z(self.updated_at),
        }


class Batch(db.Model):
    """
    Off-chain mirror of one NFT-backed registry batch.

    INVARIANTS:
    - batch_id is the chain-assigned id (globally sequential).
    - nft_token_id comes from the "nftTokenId" GlobalCounter; it is a
      separate id space from batch_id and is unique across all batches.
    - quantity == len(products) once creation has committed.
    """
    __tablename__ = "batches"
    __table_args__ = (
        db.UniqueConstraint("manufacturer_id", "manufacturer_batch_number", name="uq_batches_mfr_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    batch_id = db.Column(db.Integer, nullable=False, unique=True, index=True)
    manufacturer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    manufacturer_batch_number = db.Column(db.Integer, nullable=False)
    metadata_uri = db.Column(db.String(512), nullable=True)
    nft_token_id = db.Column(db.Integer, nullable=False, unique=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    manufacturer = db.relationship("User")
    products = db.relationship(
        "Product",
        back_populates="batch",
        order_by="Product.product_number_in_batch",
    )

    def __repr__(self) -> str:
        return f"<Batch id={self.id} batch_id={self.batch_id} nft={self.nft_token_id}>"

    def to_dict(self, include_products: bool = True) -> dict:
        data = {
            "id": self.id,
            "batchId": self.batch_id,
            "manufacturer": self.manufacturer.to_summary() if self.manufacturer else None,
            "manufacturerBatchNumber": self.manufacturer_batch_number,
            "metadataURI": self.metadata_uri,
            "nftTokenId": self.nft_token_id,
            "quantity": self.quantity,
            "createdAt": to_utc_z(self.created_at),
        }
        if include_products:
            data["products"] = [p.to_dict() for p in self.products]
        return data


class GlobalCounter(db.Model):
    """
    Named global sequences (e.g. "nftTokenId").

    WHY: Ids that must never collide across manufacturers are allocated
    here with a single atomic increment, never read-then-write.
    """
    __tablename__ = "global_counters"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False, unique=True, index=True)
    value = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "value": self.value,
            "updatedAt": to_utc_z(self.updated_at),
        }
