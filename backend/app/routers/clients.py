# backend/app/routers/clients.py

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.generated import Clients as DBClients
from ..schemas.clients import ClientCreate, ClientRead
from ..services.slots.availability import find_client_by_email

router = APIRouter(prefix="/clients", tags=["clients"])


@router.get("/", response_model=list[ClientRead])
def list_clients(db: Session = Depends(get_db)):
    return db.query(DBClients).order_by(DBClients.name).all()


@router.get("/{id}", response_model=ClientRead)
def get_client(id: int, db: Session = Depends(get_db)):
    obj = db.get(DBClients, id)
    if not obj:
        raise HTTPException(status_code=404, detail="Client not found")
    return obj


@router.post("/", response_model=ClientRead, status_code=status.HTTP_201_CREATED)
def create_client(
    data: ClientCreate,
    db: Session = Depends(get_db),
):
    if find_client_by_email(db, data.email):
        raise HTTPException(status_code=409, detail="Client with this email already exists")
    obj = DBClients(**data.model_dump())
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj
