"""
Database Schemas for Ratacueva

Each Pydantic model corresponds to a MongoDB collection. Collection name is the
lowercase class name. References to other documents are stored as string ids,
embedded sub-documents that need a stable identity get their own ``_id``.
"""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field

PaymentType = Literal["credit_card", "debit_card", "paypal", "oxxo_cash"]
RATING_STEPS = (0.5, 1, 1.5, 2, 2.5, 3, 3.5, 4, 4.5, 5)


class Document(BaseModel):
    model_config = ConfigDict(use_enum_values=True)


class Role(str, Enum):
    CLIENT = "client"
    EMPLOYEE = "employee"
    ADMIN = "admin"


STAFF_ROLES = (Role.EMPLOYEE.value, Role.ADMIN.value)


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    PAYMENT_FAILED = "payment_failed"
    ON_HOLD = "on_hold"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    FAILED = "failed"
    PARTIALLY_REFUNDED = "partially_refunded"


class ShippingStatus(str, Enum):
    PENDING = "pending"
    SHIPPED = "shipped"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    RETURNED = "returned"


class ShipmentStatus(str, Enum):
    PENDING_PICKUP = "pending_pickup"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    EXCEPTION = "exception"
    CANCELLED = "cancelled"


class Section(str, Enum):
    VIDEO_GAMES = "Video Games"
    COMPUTERS = "Computers"
    CONSOLES = "Consoles"
    COMPONENTS = "Components"
    STORAGE_FLASH = "Storage & Flash"
    ACCESSORIES = "Accessories"
    PERIPHERALS = "Peripherals"
    MONITORS = "Monitors"
    CABLES_ADAPTERS = "Cables & Adapters"
    POWER = "Power"
    NETWORKING = "Networking"


class Category(str, Enum):
    PLATFORMS = "Platforms"
    POPULAR_GENRES = "Popular Genres"
    NICHE_GENRES = "Niche Genres"
    DISCOVER_BY_PRICE = "Discover by Price"
    WORKSTATIONS = "Workstations"
    LAPTOPS = "Laptops"
    GAMING = "Gaming"
    ACCESSORIES = "Accessories"
    ARCADES = "Arcades"
    CONTROLLERS_JOYSTICKS = "Controllers/Joysticks"
    NINTENDO = "Nintendo"
    PLAY_STATION = "Play Station"
    XBOX = "XBOX"
    HANDHELDS = "Handhelds"
    MOTHERBOARDS = "Motherboards"
    PROCESSORS = "Processors"
    RAM_MEMORY = "RAM Memory"
    HARD_DRIVES = "Hard Drives"
    SSD = "Solid State Drives"
    GRAPHICS_CARDS = "Graphics Cards"
    POWER_SUPPLIES = "Power Supplies"
    CASES = "Cases"
    CASE_ACCESSORIES = "Case Accessories"
    UPGRADE_COMBOS = "Upgrade Combos"
    EXTERNAL_STORAGE = "External Storage"
    USB_FLASH_DRIVES = "USB Flash Drives"
    SD_MEMORY_CARDS = "SD Memory Cards"
    DOCKS = "Docks"
    CAPTURE_CARDS_STREAMING = "Capture Cards/Streaming"
    CPU_AIR_COOLERS = "CPU Air Coolers"
    LIQUID_COOLING_AIO = "Liquid Cooling/AIO"
    DESKS = "Desks"
    LIGHTING = "Lighting"
    KEYCAPS_SWITCHES = "Keycaps/Mechanical Switches"
    CLEANING_MAINTENANCE = "Cleaning/Maintenance"
    BACKPACKS_CASES = "Backpacks/Cases"
    OTHERS = "Others"
    CHAIRS = "Chairs"
    HEADSET_ACCESSORIES = "Headset Accessories"
    HEADPHONES_HEADSETS = "Headphones/Headsets"
    SPEAKERS = "Speakers"
    VIDEO_CAMERAS = "Video Cameras"
    WEBCAMS = "Webcams"
    COMBOS = "Combos"
    HEADSETS = "Headsets"
    MICROPHONES = "Microphones"
    MOUSE = "Mouse"
    SIMULATION_VR = "Simulation/VR"
    MOUSEPADS_WRIST_RESTS = "Mousepads/Wrist Rests"
    KEYBOARDS = "Keyboards"
    MONITORS = "Monitors"
    CURVED_MONITORS = "Curved Monitors"
    VERTICAL_MONITORS = "Vertical Monitors"
    PROJECTORS = "Projectors"
    CABLES = "Cables"
    MULTIPORT_ADAPTERS = "Multi-Port Adapters"
    CHARGERS = "Chargers"
    POWER_BANKS = "Power Banks"
    VOLTAGE_REGULATORS_UPS = "Voltage Regulators/UPS"
    ADAPTERS = "Adapters"
    WIFI_EXTENDERS = "Wi-Fi Extenders"
    ROUTERS = "Routers"
    SWITCHES = "Switches"


class Subcategory(str, Enum):
    STEAM = "Steam Games"
    XBOX = "XBOX Games"
    PSN = "PSN Games"
    MICROSOFT = "Microsoft Games"
    NINTENDO_SWITCH = "Nintendo Switch Games"
    ORIGIN = "Origin Games"
    UBISOFT = "Ubisoft Connect Games"
    EPIC = "Epic Games"
    GOG = "GOG Games"
    BATTLENET = "Battle.net Games"
    DLCS = "DLCs"
    SINGLE_PLAYER = "Single Player"
    MULTIPLAYER = "Multiplayer"
    ACTION = "Action"
    FIRST_PERSON = "First Person"
    THIRD_PERSON = "Third Person"
    SIMULATION = "Simulation"
    SPORTS = "Sports"
    COOP = "Co-Op"
    FPS_TPS = "FPS/TPS"
    ADVENTURE = "Adventure"
    STRATEGY = "Strategy"
    RACING = "Racing"
    INDIE = "Indie"
    RPG = "RPG"
    ISOMETRIC_VIEW = "Isometric View"
    HORROR = "Horror"
    VR = "Virtual Reality"
    PLATFORM = "Platform"
    HACK_SLASH = "Hack & Slash"
    FIGHTING = "Fighting"
    PUZZLE = "Puzzle"
    MMO = "MMO"
    POINT_CLICK = "Point & Click"
    ARCADE = "Arcade"
    UNDER_10 = "Under MX$10"
    UNDER_20 = "Under MX$20"
    UNDER_50 = "Under MX$50"
    UNDER_100 = "Under MX$100"
    UNDER_250 = "Under MX$250"
    UNDER_500 = "Under MX$500"
    OVER_500 = "Over MX$500"
    NOT_APPLICABLE = "Not Applicable"


class Address(Document):
    postal_code: str = Field(..., min_length=1)
    street: str = Field(..., min_length=1)
    external_number: Optional[str] = None
    internal_number: Optional[str] = None
    neighborhood: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)
    is_default: bool = False


class PaymentMethod(Document):
    type: PaymentType
    last4: Optional[str] = Field(None, pattern=r"^\d{4}$")
    provider: Optional[str] = None
    expiration: Optional[str] = Field(None, pattern=r"^(0[1-9]|1[0-2])/\d{2}$", description="MM/YY")


class User(Document):
    name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    second_last_name: str = ""
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hash of the password")
    role: Role = Role.CLIENT
    phone: Optional[str] = None
    addresses: List[dict] = Field(default_factory=list)
    payment_methods: List[dict] = Field(default_factory=list)
    favorites: List[str] = Field(default_factory=list)
    avatar_url: Optional[str] = None
    is_deleted: bool = False
    last_login_at: Optional[datetime] = None


class Product(Document):
    name: str = Field(..., min_length=1)
    description: str = ""
    brand: Optional[str] = None
    price: float = Field(..., ge=0)
    stock: int = Field(..., ge=0)
    discount_percentage: float = Field(0, ge=0, le=100)
    rating: float = Field(0, ge=0, le=5)
    section: Section
    category: Category
    subcategory: Optional[Subcategory] = None
    images: List[str] = Field(default_factory=list)
    videos: List[str] = Field(default_factory=list)
    specs: Dict[str, Union[str, int, float]] = Field(default_factory=dict)
    is_featured: bool = False
    is_new: bool = False


class CartItem(Document):
    product_id: str
    quantity: int = Field(..., ge=1)
    price_at_addition: float = Field(..., ge=0)
    selected_variation: Optional[str] = None


class OrderItem(Document):
    product_id: str
    name: str
    price_at_addition: float = Field(..., ge=0, description="Unit price after discount")
    quantity: int = Field(..., ge=1)
    selected_variation: Optional[str] = None
    image_url: Optional[str] = None
    discount_percentage_applied: float = 0


class PaymentDetails(Document):
    type: PaymentType
    transaction_id: Optional[str] = None
    last4: Optional[str] = None
    provider: Optional[str] = None


class Order(Document):
    user_id: str
    items: List[OrderItem]
    subtotal: float = Field(..., ge=0)
    shipping_cost: float = Field(0, ge=0)
    tax_amount: float = Field(0, ge=0)
    discount_amount: float = Field(0, ge=0)
    total_amount: float = Field(..., ge=0)
    currency: str = "MXN"
    order_status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    shipping_status: ShippingStatus = ShippingStatus.PENDING
    shipping_address: Optional[Address] = None
    billing_address: Optional[Address] = None
    payment_details: PaymentDetails
    tracking_number: Optional[str] = None
    shipping_provider: Optional[str] = None
    estimated_delivery_date: Optional[datetime] = None
    notes: Optional[str] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None


class TrackingEvent(Document):
    status: ShipmentStatus
    timestamp: datetime
    location: Optional[str] = None
    notes: Optional[str] = None


class ShipmentItem(Document):
    product_id: str
    quantity: int = Field(..., ge=1)


class Shipment(Document):
    order_id: str
    user_id: str
    tracking_number: str
    shipping_provider: str
    current_status: ShipmentStatus = ShipmentStatus.PENDING_PICKUP
    shipping_address: Address
    items: List[ShipmentItem]
    estimated_delivery_date: Optional[datetime] = None
    tracking_events: List[TrackingEvent] = Field(default_factory=list)


class Review(Document):
    user_id: str
    user_name: str
    product_id: str
    rating: float
    text: Optional[str] = Field(None, max_length=1000)
    images: List[str] = Field(default_factory=list)
    videos: List[str] = Field(default_factory=list)
