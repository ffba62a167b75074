from . import create_app, socketio


def main():
    app = create_app()
    # Production-safe configuration
    debug_mode = app.config['ENV_NAME'] == 'development'
    socketio.run(app, debug=debug_mode, host='0.0.0.0', port=app.config['PORT'], allow_unsafe_werkzeug=True)


if __name__ == '__main__':
    main()
