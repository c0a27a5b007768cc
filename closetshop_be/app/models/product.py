from sqlalchemy import Column, Integer, String, JSON
from sqlalchemy.dialects.postgresql import JSONB
from app.models.user import Base

class Product(Base):
    __tablename__ = "products"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Integer, nullable=False)  # KRW, no minor units
    images = Column(JSON().with_variant(JSONB, "postgresql"))  # List of URLs or paths

    @property
    def main_image(self) -> str:
        return (self.images or [""])[0] or ""
