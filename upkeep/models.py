from datetime import datetime, timezone

from sqlalchemy import event
from sqlalchemy.ext.orderinglist import ordering_list
from sqlalchemy.orm import Session, validates

from upkeep import db
from upkeep.errors import StateConflict
from upkeep.estimates import totals


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


ESTIMATE_STATUSES = (
    'draft',
    'submitted',
    'pending',
    'approved',
    'rejected',
    'converted_to_workorder',
    'converted_to_invoice',
    'client_accepted',
    'client_rejected',
)
CONVERTED_STATUSES = ('converted_to_workorder', 'converted_to_invoice')
PRIORITIES = ('low', 'medium', 'high', 'urgent')
PHOTO_TYPES = ('site_visit', 'before', 'reference', 'damage', 'measurement', 'other')
TAX_TYPES = ('percentage', 'fixed')
WORK_ORDER_STATUSES = ('pending', 'in_progress', 'on_hold', 'completed', 'cancelled')
INVOICE_STATUSES = (
    'open', 'pending', 'sent', 'viewed', 'accepted', 'paid', 'overdue', 'cancelled', 'refunded'
)


class ProjectEstimate(db.Model):
    __tablename__ = 'project_estimate'
    id                  = db.Column(db.Integer, primary_key=True)
    title               = db.Column(db.String(200), nullable=False)
    description         = db.Column(db.Text, nullable=False)
    building_id         = db.Column(db.Integer, nullable=False, index=True)
    apartment_number    = db.Column(db.String(32))
    estimated_cost      = db.Column(db.Float, nullable=False, default=0.0)
    estimated_price     = db.Column(db.Float, nullable=False, default=0.0)
    estimated_duration  = db.Column(db.Integer, nullable=False, default=1)  # days
    visit_date          = db.Column(db.DateTime, default=utcnow)
    proposed_start_date = db.Column(db.DateTime)
    target_year         = db.Column(db.Integer, default=lambda: utcnow().year)
    status              = db.Column(db.String(32), nullable=False, default='draft', index=True)
    priority            = db.Column(db.String(16), nullable=False, default='medium')
    photos              = db.Column(db.JSON, default=list)
    notes               = db.Column(db.Text)
    client_notes        = db.Column(db.Text)
    rejection_reason    = db.Column(db.Text)
    # set once on conversion; see validate_reference
    work_order_id       = db.Column(db.Integer)
    invoice_id          = db.Column(db.Integer)
    created_by          = db.Column(db.String(64), nullable=False)
    approved_by         = db.Column(db.String(64))
    approved_at         = db.Column(db.DateTime)
    submitted_at        = db.Column(db.DateTime)
    created_at          = db.Column(db.DateTime, default=utcnow)
    updated_at          = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    line_items = db.relationship(
        'EstimateLineItem',
        back_populates='estimate',
        order_by='EstimateLineItem.position',
        collection_class=ordering_list('position'),
        cascade='all, delete-orphan',
    )
    client_interaction = db.relationship(
        'ClientInteraction',
        back_populates='estimate',
        uselist=False,
        cascade='all, delete-orphan',
    )

    @validates('work_order_id', 'invoice_id')
    def validate_reference(self, key, value):
        current = getattr(self, key)
        if current is not None and value != current:
            raise StateConflict('Project estimate has already been converted')
        return value

    @property
    def is_converted(self):
        return self.status in CONVERTED_STATUSES

    @property
    def interaction(self):
        """The client-interaction record, created on first use."""
        if self.client_interaction is None:
            self.client_interaction = ClientInteraction()
        return self.client_interaction

    @property
    def line_items_total(self):
        if not self.line_items:
            return totals.money(self.estimated_price)
        return totals.line_items_total(self.line_items)

    @property
    def line_items_cost(self):
        if not self.line_items:
            return totals.money(self.estimated_cost)
        return totals.line_items_cost(self.line_items)

    @property
    def estimated_profit(self):
        return totals.profit(self.estimated_price, self.estimated_cost)

    @property
    def estimated_profit_margin(self):
        return totals.profit_margin(self.estimated_price, self.estimated_cost)


class EstimateLineItem(db.Model):
    __tablename__ = 'estimate_line_item'
    id              = db.Column(db.Integer, primary_key=True)
    estimate_id     = db.Column(
                        db.Integer,
                        db.ForeignKey('project_estimate.id', ondelete='CASCADE'),
                        nullable=False
                      )
    position        = db.Column(db.Integer, nullable=False, default=0)
    service_date    = db.Column(db.Date)
    product_service = db.Column(db.String(200), default='')
    description     = db.Column(db.Text, default='')
    qty             = db.Column(db.Float, nullable=False, default=1.0)
    rate            = db.Column(db.Float, nullable=False, default=0.0)
    amount          = db.Column(db.Float, nullable=False, default=0.0)
    tax             = db.Column(db.Float, nullable=False, default=0.0)
    tax_type        = db.Column(db.String(16), nullable=False, default='percentage')
    estimated_cost  = db.Column(db.Float, nullable=False, default=0.0)
    notes           = db.Column(db.Text, default='')
    item_class      = db.Column(db.String(100), default='')  # internal only

    estimate = db.relationship('ProjectEstimate', back_populates='line_items')

    @property
    def tax_amount(self):
        return totals.money(totals.line_tax(self))


class ClientInteraction(db.Model):
    __tablename__ = 'client_interaction'
    id                      = db.Column(db.Integer, primary_key=True)
    estimate_id             = db.Column(
                                db.Integer,
                                db.ForeignKey('project_estimate.id', ondelete='CASCADE'),
                                nullable=False,
                                unique=True
                              )
    sent_to_client          = db.Column(db.Boolean, nullable=False, default=False)
    sent_at                 = db.Column(db.DateTime)
    sent_to                 = db.Column(db.String(254))
    client_viewed           = db.Column(db.Boolean, nullable=False, default=False)
    viewed_at               = db.Column(db.DateTime)
    client_accepted         = db.Column(db.Boolean, nullable=False, default=False)
    accepted_at             = db.Column(db.DateTime)
    accepted_by             = db.Column(db.String(200))
    client_signature        = db.Column(db.Text)  # base64 image
    client_rejected         = db.Column(db.Boolean, nullable=False, default=False)
    rejected_at             = db.Column(db.DateTime)
    client_rejection_reason = db.Column(db.Text)
    ip_address              = db.Column(db.String(64))

    estimate = db.relationship('ProjectEstimate', back_populates='client_interaction')


class WorkOrder(db.Model):
    __tablename__ = 'work_order'
    id                  = db.Column(db.Integer, primary_key=True)
    title               = db.Column(db.String(200), nullable=False)
    description         = db.Column(db.Text)
    building_id         = db.Column(db.Integer, nullable=False)
    apartment_number    = db.Column(db.String(32))
    estimated_cost      = db.Column(db.Float, default=0.0)
    price               = db.Column(db.Float, default=0.0)
    scheduled_date      = db.Column(db.DateTime)
    photos              = db.Column(db.JSON, default=list)
    notes               = db.Column(db.Text)
    status              = db.Column(db.String(32), nullable=False, default='pending')
    created_by          = db.Column(db.String(64))
    project_estimate_id = db.Column(db.Integer, db.ForeignKey('project_estimate.id'), index=True)
    created_at          = db.Column(db.DateTime, default=utcnow)


class Invoice(db.Model):
    __tablename__ = 'invoice'
    id                  = db.Column(db.Integer, primary_key=True)
    invoice_number      = db.Column(db.String(32), unique=True, nullable=False)
    project_estimate_id = db.Column(db.Integer, db.ForeignKey('project_estimate.id'), index=True)
    building_id         = db.Column(db.Integer, nullable=False)
    apartment_number    = db.Column(db.String(32))
    description         = db.Column(db.Text)
    subtotal            = db.Column(db.Float, nullable=False, default=0.0)
    tax                 = db.Column(db.Float, nullable=False, default=0.0)
    total               = db.Column(db.Float, nullable=False, default=0.0)
    status              = db.Column(db.String(32), nullable=False, default='open')
    invoice_date        = db.Column(db.DateTime, default=utcnow)
    due_date            = db.Column(db.DateTime)
    notes               = db.Column(db.Text)
    created_by          = db.Column(db.String(64))
    created_at          = db.Column(db.DateTime, default=utcnow)

    line_items = db.relationship(
        'InvoiceLineItem',
        back_populates='invoice',
        order_by='InvoiceLineItem.position',
        collection_class=ordering_list('position'),
        cascade='all, delete-orphan',
    )

    def calculate_totals(self):
        self.subtotal = totals.money(sum(totals.to_amount(i.total_price) for i in self.line_items))
        self.total = totals.money(self.subtotal + totals.to_amount(self.tax))
        return {'subtotal': self.subtotal, 'tax': totals.money(self.tax), 'total': self.total}


class InvoiceLineItem(db.Model):
    __tablename__ = 'invoice_line_item'
    id            = db.Column(db.Integer, primary_key=True)
    invoice_id    = db.Column(
                      db.Integer,
                      db.ForeignKey('invoice.id', ondelete='CASCADE'),
                      nullable=False
                    )
    position      = db.Column(db.Integer, nullable=False, default=0)
    work_order_id = db.Column(db.Integer)
    description   = db.Column(db.Text, nullable=False)
    quantity      = db.Column(db.Float, nullable=False, default=1.0)
    unit_price    = db.Column(db.Float, nullable=False, default=0.0)
    total_price   = db.Column(db.Float, nullable=False, default=0.0)

    invoice = db.relationship('Invoice', back_populates='line_items')


class InvoiceCounter(db.Model):
    __tablename__ = 'invoice_counter'
    year  = db.Column(db.Integer, primary_key=True, autoincrement=False)
    count = db.Column(db.Integer, nullable=False, default=0)


@event.listens_for(Session, 'before_flush')
def recalculate_estimate_totals(session, flush_context, instances):
    """Recompute flat totals for every estimate touched by this flush."""
    touched = []
    for obj in list(session.new) + list(session.dirty):
        est = None
        if isinstance(obj, ProjectEstimate):
            est = obj
        elif isinstance(obj, EstimateLineItem):
            est = obj.estimate
        if est is not None and est not in touched and est not in session.deleted:
            touched.append(est)
    for est in touched:
        totals.calculate_totals(est)
