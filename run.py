import os

from vmcandles import create_app, db

app = create_app()

if __name__ == '__main__':
    with app.app_context():
        db.create_all()
    app.run(debug=app.config.get('DEBUG', False), port=int(os.environ.get('PORT', 5001)))
