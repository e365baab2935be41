"""
Pydantic models for the Catalog Image Extraction API
Mirrors the TypeScript interfaces used by the catalog front end
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import List, Optional, Sequence


class NormalizedBox(BaseModel):
    """Region of interest on a 0-1000 scale relative to page dimensions"""
    model_config = ConfigDict(frozen=True)

    ymin: float
    xmin: float
    ymax: float
    xmax: float

    @classmethod
    def from_sequence(cls, box: Sequence[float]) -> 'NormalizedBox':
        """Build from the [ymin, xmin, ymax, xmax] order the recognizer returns"""
        if len(box) != 4:
            raise ValueError(f"Expected [ymin, xmin, ymax, xmax], got {list(box)!r}")
        ymin, xmin, ymax, xmax = box
        return cls(ymin=ymin, xmin=xmin, ymax=ymax, xmax=xmax)

    def as_list(self) -> List[float]:
        return [self.ymin, self.xmin, self.ymax, self.xmax]


class ImageInfo(BaseModel):
    """Encoded image reference attached to a product or returned per page"""
    filename: str
    page: int
    hash: str
    base64: str  # data URI


class Origin(BaseModel):
    source_pdf: str
    page: int


class Specification(BaseModel):
    key: str
    value: str


class ProductData(BaseModel):
    """Structured product record returned by the recognition collaborator"""
    nome: Optional[str] = None
    modelo: Optional[str] = None
    descricao: Optional[str] = None
    codigo: Optional[str] = None
    sku: Optional[str] = None
    codigo_barras: Optional[str] = None
    ncm: Optional[str] = None
    categoria: Optional[str] = None

    # Dimensions & Weight
    peso_kg: Optional[str] = None
    altura_cm: Optional[str] = None
    largura_cm: Optional[str] = None
    comprimento_cm: Optional[str] = None

    # Google Shopping / Instagram
    mpn: Optional[str] = None
    faixa_etaria: Optional[str] = None
    sexo: Optional[str] = None

    especificacoes: List[Specification] = Field(default_factory=list)
    avisos: List[str] = Field(default_factory=list)

    # Region of the product photo on the page, [ymin, xmin, ymax, xmax] on 0-1000
    bounding_box: Optional[List[float]] = None

    # Internal
    origem: Optional[Origin] = None
    imagens: List[ImageInfo] = Field(default_factory=list)
    imagem_produto_base64: Optional[str] = None


class PageImagesResponse(BaseModel):
    """Whole-page JPEG renders for the selected pages of one file"""
    filename: str
    pageCount: int
    images: List[ImageInfo]


class RegionImageRequest(BaseModel):
    """Region extraction parameters posted alongside an uploaded PDF"""
    page_number: int = Field(..., ge=1)
    box: List[float] = Field(..., min_length=4, max_length=4)
    scale: Optional[float] = Field(None, gt=0)

    @model_validator(mode='after')
    def _check_box(self) -> 'RegionImageRequest':
        if any(v != v for v in self.box):
            raise ValueError("box must not contain NaN")
        return self
