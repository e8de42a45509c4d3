import os
import logging
from datetime import datetime
from flask import Flask, request, jsonify
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import JSON

from circuit_inputs import generate_verifier_circuit_inputs
from dkim_resolver import DKIMKeyResolver, ResolverConfig
from email_generators import load_generator
from errors import (
    CircuitInputError,
    DKIMResolutionError,
    GeneratorError,
    InvalidRecordName,
    MalformedRecord,
    ResolutionExhausted,
    SourceUnavailable,
)

# Configure logging
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))

class Base(DeclarativeBase):
    pass

db = SQLAlchemy(model_class=Base)

# Create the Flask app
app = Flask(__name__)
app.secret_key = os.environ.get("SESSION_SECRET", "zk-email-inputs-secret-key")

# Configure the database
database_url = os.environ.get("DATABASE_URL")
if database_url:
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    if not database_url.startswith("sqlite"):
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
            "pool_recycle": 300,
            "pool_pre_ping": True,
        }
else:
    # Fallback for development
    app.config["SQLALCHEMY_DATABASE_URI"] = "sqlite:///circuit_inputs.db"

app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
app.config["EMAIL_INPUT_GENERATOR"] = os.environ.get("EMAIL_INPUT_GENERATOR")

# Initialize the app with the extension
db.init_app(app)

# Initialize DKIM key resolver
dkim_resolver = DKIMKeyResolver(ResolverConfig.from_env())

class CircuitInputRecord(db.Model):
    """Store assembled verifier circuit inputs."""
    __tablename__ = 'circuit_input_records'

    id = db.Column(db.Integer, primary_key=True)
    address = db.Column(db.String(255), nullable=False, index=True)
    keywords = db.Column(JSON, nullable=False)
    keyword_index = db.Column(db.String(1024), nullable=False)
    from_domain_match = db.Column(db.Boolean, nullable=False)
    to_domain_match = db.Column(db.Boolean, nullable=False)
    inputs = db.Column(JSON, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f'<CircuitInputRecord {self.id} {self.keyword_index}>'

    def to_dict(self):
        return {
            'id': self.id,
            'address': self.address,
            'keywords': self.keywords,
            'inputs': self.inputs,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

# Create tables
with app.app_context():
    db.create_all()


def error_response(error: Exception, status: int):
    return jsonify({
        'error': type(error).__name__,
        'code': getattr(error, 'code', None),
        'message': str(error),
    }), status


def _get_generator():
    generator = app.config.get("EMAIL_INPUT_GENERATOR")
    if isinstance(generator, str):
        generator = load_generator(generator)
    return generator


@app.route('/api/dkim-key')
def dkim_key():
    """Resolve the DKIM public key for a selector and domain."""
    selector = request.args.get('selector', '').strip()
    domain = request.args.get('domain', '').strip()

    if not selector or not domain:
        return jsonify({'error': 'BadRequest', 'code': 'EINVAL',
                        'message': 'selector and domain are required'}), 400

    try:
        record = dkim_resolver.resolve(selector, domain)
    except InvalidRecordName as e:
        return error_response(e, 400)
    except ResolutionExhausted as e:
        logging.warning(f"DKIM resolution exhausted for {selector}/{domain}")
        return error_response(e, 404)
    except MalformedRecord as e:
        return error_response(e, 422)
    except SourceUnavailable as e:
        logging.error(f"DKIM archive unavailable for {selector}/{domain}: {e}")
        return error_response(e, 502)
    except DKIMResolutionError as e:
        return error_response(e, 500)

    return jsonify(record.to_dict())


@app.route('/api/circuit-inputs', methods=['POST'])
def create_circuit_inputs():
    """Assemble and store verifier circuit inputs for an email."""
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return jsonify({'error': 'BadRequest', 'code': 'EINVAL',
                        'message': 'request body must be a JSON object'}), 400
    email = payload.get('email')
    address = payload.get('address')
    keywords = payload.get('keywords')

    if not isinstance(email, str) or not email:
        return jsonify({'error': 'BadRequest', 'code': 'EINVAL', 'message': 'email is required'}), 400
    if not isinstance(address, str) or not address:
        return jsonify({'error': 'BadRequest', 'code': 'EINVAL', 'message': 'address is required'}), 400
    if not isinstance(keywords, list) or not all(isinstance(k, str) for k in keywords):
        return jsonify({'error': 'BadRequest', 'code': 'EINVAL',
                        'message': 'keywords must be a list of strings'}), 400

    try:
        generator = _get_generator()
    except GeneratorError as e:
        logging.error(f"Email input generator misconfigured: {e}")
        return error_response(e, 503)
    if generator is None:
        return jsonify({'error': 'ServiceUnavailable', 'code': 'EGENERATOR',
                        'message': 'No email input generator is configured'}), 503

    try:
        inputs = generate_verifier_circuit_inputs(email, address, keywords, generator)
    except CircuitInputError as e:
        logging.info(f"Circuit input assembly failed: {e}")
        return error_response(e, 422)

    record = CircuitInputRecord(
        address=inputs.address,
        keywords=keywords,
        keyword_index=inputs.keyword_index,
        from_domain_match=inputs.from_domain_match,
        to_domain_match=inputs.to_domain_match,
        inputs=inputs.to_dict(),
    )
    db.session.add(record)
    db.session.commit()

    return jsonify({'id': record.id, 'inputs': record.inputs}), 201


@app.route('/api/circuit-inputs/<int:record_id>')
def get_circuit_inputs(record_id):
    record = db.session.get(CircuitInputRecord, record_id)
    if record is None:
        return jsonify({'error': 'NotFound', 'code': 'ENOENT',
                        'message': f'No circuit inputs with id {record_id}'}), 404
    return jsonify(record.to_dict())


@app.errorhandler(404)
def not_found_error(error):
    return jsonify({'error': 'NotFound', 'code': 'ENOENT', 'message': 'Not found'}), 404

@app.errorhandler(500)
def internal_error(error):
    return jsonify({'error': 'InternalServerError', 'code': 'EINTERNAL',
                    'message': 'An internal error occurred. Please try again.'}), 500

if __name__ == '__main__':
    app.run(host='0.0.0.0', port=5000, debug=True)
